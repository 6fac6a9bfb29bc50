"""
Message sinks for the storage consumer.
"""

from .storage_sink import SinkOutcome, StorageSink

__all__ = [
    "SinkOutcome",
    "StorageSink",
]
