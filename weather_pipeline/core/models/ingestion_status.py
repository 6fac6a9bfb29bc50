"""
Status models for ingestion runs.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class PublishSummary(BaseModel):
    """
    Totals reported by the producer once a record sequence is drained.

    Attributes:
        accepted: Records handed to the bus client
        delivered: Records acknowledged by the broker
        failed: Records whose delivery callback reported an error
        duration_seconds: Wall time from first send to end of flush
    """

    accepted: int = Field(0, ge=0)
    delivered: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    duration_seconds: float = Field(0.0, ge=0.0)


class IngestionStatus(BaseModel):
    """
    Point-in-time view of an ingestion job.

    Attributes:
        job_id: Handle identifier
        path: CSV file being ingested
        state: pending, running, completed, failed or cancelled
        records_read: Lines parsed into records
        records_published: Records accepted by the producer
        parse_errors: Malformed rows skipped by the reader
        send_failures: Records whose publish failed
        started_at: When the job started running
        finished_at: When the job reached a terminal state
        error: Failure description for failed jobs
    """

    job_id: str
    path: str
    state: Literal["pending", "running", "completed", "failed", "cancelled"] = "pending"
    records_read: int = 0
    records_published: int = 0
    parse_errors: int = 0
    send_failures: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.state in ("completed", "failed", "cancelled")
