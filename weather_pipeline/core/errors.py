"""
Exception hierarchy for the weather pipeline.
"""


class WeatherPipelineError(Exception):
    """Base class for pipeline errors."""
    pass


class CsvParseError(WeatherPipelineError, ValueError):
    """
    Raised when a single CSV line cannot be turned into a record.

    The reader catches this per row; it never aborts an ingest.
    """

    def __init__(self, reason: str, line: str = "", line_number: int | None = None):
        self.reason = reason
        self.line = line
        self.line_number = line_number
        location = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{location}{reason}")


class StorageError(WeatherPipelineError):
    """Base class for failures while persisting a record."""
    pass


class PersistenceError(StorageError):
    """Non-transient database failure for one message."""
    pass


class TransientStorageError(StorageError):
    """Database temporarily unavailable (connection refused, pool timeout)."""
    pass


class IngestionError(WeatherPipelineError):
    """Raised by IngestionJob.wait() when the job ended in failure."""
    pass
