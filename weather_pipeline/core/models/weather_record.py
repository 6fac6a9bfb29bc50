"""
WeatherRecord model: one in-flight weather observation (before persistence).
"""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

# NUL and other C0/C1 controls; PostgreSQL text rejects NUL outright
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")


class WeatherRecord(BaseModel):
    """
    A single weather observation as produced by the CSV reader.

    Records are immutable values. They have no identity until persisted
    as a WeatherRow.

    Attributes:
        timestamp: Local observation time, second resolution, no zone
        city: Short city identifier (<= 50 chars), the partition key
        temperature: Degrees Celsius
        humidity: Percent (not clamped)
        rainfall: Millimetres
        wind_speed: km/h (serialized as ``windSpeed``)
        pressure: hPa
    """

    timestamp: datetime
    city: str = Field(..., min_length=1, max_length=50)
    temperature: float
    humidity: float
    rainfall: float
    wind_speed: float = Field(..., alias="windSpeed")
    pressure: float

    @field_validator("timestamp")
    @classmethod
    def check_local_second_resolution(cls, v: datetime) -> datetime:
        """Reject zoned timestamps and truncate to whole seconds."""
        if v.tzinfo is not None:
            raise ValueError("timestamp must be a local date-time without zone")
        return v.replace(microsecond=0)

    @field_validator("city")
    @classmethod
    def check_city(cls, v: str) -> str:
        """Trim, then reject blank names and control characters."""
        v = v.strip()
        if not v:
            raise ValueError("city must not be blank")
        if _CONTROL_CHARS_RE.search(v):
            raise ValueError("city must not contain control characters")
        return v

    @property
    def partition_key(self) -> str:
        """Key used for partition assignment on the bus."""
        return self.city

    def is_from_city(self, city_name: str) -> bool:
        """Case-insensitive city comparison."""
        return self.city.casefold() == city_name.strip().casefold()

    def is_in_range(self, start: datetime, end: datetime) -> bool:
        """True when start < timestamp < end."""
        return start < self.timestamp < end

    class Config:
        frozen = True
        populate_by_name = True
        allow_inf_nan = False
        json_schema_extra = {
            "example": {
                "timestamp": "2024-03-15T08:00:00",
                "city": "Mbeya",
                "temperature": 18.5,
                "humidity": 75.0,
                "rainfall": 0.20,
                "windSpeed": 12.5,
                "pressure": 1015.3
            }
        }
