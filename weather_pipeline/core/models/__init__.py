"""
Data models for the weather pipeline.

All models use Pydantic for runtime validation.
"""

from .consumer_stats import ConsumerStats
from .decode_result import DecodeResult
from .ingestion_status import IngestionStatus, PublishSummary
from .weather_record import WeatherRecord
from .weather_row import WeatherRow

__all__ = [
    "WeatherRecord",
    "WeatherRow",
    "DecodeResult",
    "ConsumerStats",
    "IngestionStatus",
    "PublishSummary",
]
