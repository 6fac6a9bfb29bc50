"""
DecodeResult model: outcome of decoding one bus message (ephemeral).
"""

from pydantic import BaseModel, field_validator

from .weather_record import WeatherRecord


class DecodeResult(BaseModel):
    """
    Either a decoded record or the reason the message was rejected.

    The consumer branches on ``ok`` instead of catching exceptions, so
    "drop and continue" is an ordinary return value.

    Attributes:
        record: The decoded record when decoding succeeded
        reason: Why the message was rejected (None on success)
    """

    record: WeatherRecord | None = None
    reason: str | None = None

    @field_validator("reason")
    @classmethod
    def check_exclusive(cls, v, info):
        """Exactly one of record / reason must be set."""
        has_record = info.data.get("record") is not None
        if has_record == (v is not None):
            raise ValueError("DecodeResult needs exactly one of record or reason")
        return v

    @property
    def ok(self) -> bool:
        return self.record is not None

    @classmethod
    def accepted(cls, record: WeatherRecord) -> "DecodeResult":
        return cls(record=record, reason=None)

    @classmethod
    def rejected(cls, reason: str) -> "DecodeResult":
        return cls(record=None, reason=reason)
