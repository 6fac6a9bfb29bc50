"""
Storage sink: turns consumed messages into weather_data rows.

Owns the two process-wide counters (processedCount, errorCount) and the
milestone log checkpoints that report them.
"""

import enum

import psycopg

from weather_pipeline.config import PipelineSettings
from weather_pipeline.core.codec import decode
from weather_pipeline.core.errors import PersistenceError, StorageError, TransientStorageError
from weather_pipeline.core.models import ConsumerStats, WeatherRow
from weather_pipeline.observability.counters import AtomicCounter
from weather_pipeline.observability.logger import get_logger
from weather_pipeline.observability.metrics import MetricsCollector, insert_duration_seconds, track_duration
from weather_pipeline.streaming.dead_letter import DeadLetterPublisher
from weather_pipeline.warehouse.repository import WeatherDataRepository

logger = get_logger(__name__)


class SinkOutcome(enum.Enum):
    """What the consumer should do with the offset after handle()."""

    PERSISTED = "persisted"  # row committed, offset may advance
    DROPPED = "dropped"      # undecodable, offset may advance
    RETRY = "retry"          # not stored, rewind and redeliver

    @property
    def advances_offset(self) -> bool:
        return self is not SinkOutcome.RETRY


class StorageSink:
    """
    Decodes bus messages and inserts them into weather_data.

    handle() is called from every consumer worker thread; the counters are
    AtomicCounters and the repository borrows pooled connections, so one
    sink instance is shared by all workers.
    """

    def __init__(
        self,
        repository: WeatherDataRepository,
        settings: PipelineSettings,
        metrics: MetricsCollector | None = None,
        dead_letter: DeadLetterPublisher | None = None,
    ):
        """
        Args:
            repository: weather_data access
            settings: Milestone intervals
            metrics: Metrics collector
            dead_letter: Optional forwarder for dropped messages
        """
        self.repository = repository
        self.metrics = metrics or MetricsCollector()
        self.dead_letter = dead_letter
        self.log_interval = settings.sink_log_interval
        self.status_interval = settings.sink_status_interval

        self.processed_count = AtomicCounter()
        self.error_count = AtomicCounter()

    def handle(
        self,
        value: bytes | str | None,
        key: bytes | None = None,
        partition: int | None = None,
        offset: int | None = None,
    ) -> SinkOutcome:
        """
        Decode and persist one message.

        Args:
            value: Raw message value
            key: Raw message key (forwarded to dead-letter as-is)
            partition: Source partition (logging)
            offset: Source offset (logging)

        Returns:
            SinkOutcome telling the consumer whether the offset may advance
        """
        result = decode(value)
        if not result.ok:
            errors = self.error_count.increment()
            self.metrics.record_message("dropped")
            self._publish_counters()
            logger.error(
                f"Error processing weather data message [Error #{errors}]: {result.reason}",
                extra={"partition": partition, "offset": offset, "reason": result.reason}
            )
            if self.dead_letter is not None:
                raw = value.encode("utf-8") if isinstance(value, str) else value
                self.dead_letter.forward(key, raw, result.reason)
            return SinkOutcome.DROPPED

        try:
            self.persist(result.record)
        except TransientStorageError as e:
            self.metrics.record_message("retried")
            logger.warning(
                f"Database unavailable, message will be redelivered: {e}",
                extra={"partition": partition, "offset": offset}
            )
            return SinkOutcome.RETRY
        except PersistenceError as e:
            errors = self.error_count.increment()
            self.metrics.record_message("retried")
            self._publish_counters()
            logger.error(
                f"Error storing weather data message [Error #{errors}]: {e}",
                extra={"partition": partition, "offset": offset, "city": result.record.city}
            )
            return SinkOutcome.RETRY

        return SinkOutcome.PERSISTED

    def persist(self, record) -> WeatherRow:
        """
        Insert a decoded record and advance processedCount after commit.

        Raises:
            StorageError: If the insert did not commit
        """
        with track_duration(insert_duration_seconds):
            row = self.repository.insert(record)

        count = self.processed_count.increment()
        self.metrics.record_message("persisted")
        self._publish_counters()

        if count % self.log_interval == 0:
            logger.info(
                f"Stored {count} weather records in database. "
                f"Latest: {row.city} - {row.timestamp.isoformat()}",
                extra={"count": count, "city": row.city}
            )

        if count % self.status_interval == 0:
            self.log_status()

        return row

    def stats(self) -> ConsumerStats:
        """
        Counters plus freshly queried database totals.

        Raises:
            StorageError: If the database cannot be queried
        """
        try:
            total = self.repository.count_all()
            unprocessed = self.repository.count_unprocessed()
        except psycopg.Error as e:
            raise StorageError(f"Could not query weather_data totals: {e}") from e

        self.metrics.record_row_counts(total, unprocessed)
        return ConsumerStats(
            processed=self.processed_count.get(),
            errors=self.error_count.get(),
            total_rows=total,
            unprocessed_rows=unprocessed,
        )

    def log_status(self) -> ConsumerStats | None:
        """Emit the database status checkpoint; failures are only logged."""
        try:
            stats = self.stats()
        except StorageError as e:
            logger.warning(f"Database status checkpoint skipped: {e}")
            return None

        logger.info(
            f"Database Status - Total: {stats.total_rows}, "
            f"Unprocessed: {stats.unprocessed_rows}, Error Count: {stats.errors}",
            extra=stats.model_dump()
        )
        return stats

    def reset_counters(self) -> None:
        self.processed_count.reset()
        self.error_count.reset()
        self._publish_counters()
        logger.info("Consumer counters reset")

    def _publish_counters(self) -> None:
        self.metrics.record_consumer_counters(self.processed_count.get(), self.error_count.get())
