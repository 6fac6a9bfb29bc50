"""
WeatherRow model representing a persisted observation in weather_data.
"""

from datetime import datetime

from pydantic import Field

from .weather_record import WeatherRecord


class WeatherRow(WeatherRecord):
    """
    A WeatherRecord after insertion.

    Attributes:
        id: Identity assigned by the database
        created_at: When the row was inserted
        processed: Downstream processing flag (defaults to False, never reset)
    """

    id: int = Field(..., ge=1)
    created_at: datetime
    processed: bool = False

    @classmethod
    def from_db_row(cls, row: dict) -> "WeatherRow":
        """Build from a psycopg dict_row of the weather_data table."""
        return cls.model_validate(dict(row))

    def to_record(self) -> WeatherRecord:
        """Strip identity and bookkeeping columns."""
        return WeatherRecord.model_validate(
            self.model_dump(exclude={"id", "created_at", "processed"})
        )
