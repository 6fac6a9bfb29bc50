"""
ConsumerStats model: status snapshot of the storage consumer.
"""

from pydantic import BaseModel, Field


class ConsumerStats(BaseModel):
    """
    Consumer counters combined with a fresh database count.

    Attributes:
        processed: Messages successfully persisted since the last reset
        errors: Messages dropped (decode) or failed (persistence)
        total_rows: Rows currently in weather_data
        unprocessed_rows: Rows with processed = false
    """

    processed: int = Field(0, ge=0)
    errors: int = Field(0, ge=0)
    total_rows: int = Field(0, ge=0)
    unprocessed_rows: int = Field(0, ge=0)

    def __str__(self) -> str:
        return (
            f"ConsumerStats(processed={self.processed}, errors={self.errors}, "
            f"total_rows={self.total_rows}, unprocessed_rows={self.unprocessed_rows})"
        )
