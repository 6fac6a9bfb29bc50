"""
CSV ingestion jobs.
"""

from .job import IngestionJob, Ingestor

__all__ = [
    "IngestionJob",
    "Ingestor",
]
