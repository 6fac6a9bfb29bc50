"""
In-process control surface for the weather pipeline.

PipelineService wires settings, the database pool and the Kafka clients
together and exposes the operations the CLI drives: ingest, run the
storage consumer, query its counters, purge processed rows.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable

from kafka import KafkaProducer

from weather_pipeline.config import PipelineSettings
from weather_pipeline.core.models import ConsumerStats
from weather_pipeline.ingestion.job import IngestionJob, Ingestor
from weather_pipeline.observability.logger import get_logger
from weather_pipeline.observability.metrics import MetricsCollector
from weather_pipeline.streaming.consumer import ConsumerFactory, StorageConsumer
from weather_pipeline.streaming.dead_letter import DeadLetterPublisher
from weather_pipeline.streaming.producer import create_kafka_producer
from weather_pipeline.streaming.sinks.storage_sink import StorageSink
from weather_pipeline.warehouse.connection import DatabaseConnectionPool
from weather_pipeline.warehouse.repository import WeatherDataRepository
from weather_pipeline.warehouse.schema_mgmt import SchemaManager

logger = get_logger(__name__)


class PipelineService:
    """
    Owns the pipeline's long-lived resources.

    Usage:
        with PipelineService(PipelineSettings.from_env()) as service:
            service.start_consumer()
            job = service.ingest("/data/tanzania_weather_data.csv")
            job.wait()
            print(service.consumer_stats())
    """

    def __init__(
        self,
        settings: PipelineSettings,
        pool: DatabaseConnectionPool | None = None,
        producer_factory: Callable[[], KafkaProducer] | None = None,
        consumer_factory: ConsumerFactory | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Args:
            settings: Pipeline settings
            pool: Open database pool (one is created from settings on first use
                when omitted, and closed by close())
            producer_factory: Builds the shared producer client
            consumer_factory: (group_id, client_id) -> KafkaConsumer for the
                storage workers
            metrics: Metrics collector
        """
        self.settings = settings
        self.metrics = metrics or MetricsCollector()
        self._pool = pool
        self._owns_pool = pool is None
        self._producer_factory = producer_factory or (lambda: create_kafka_producer(settings))
        self._consumer_factory = consumer_factory

        self._repository: WeatherDataRepository | None = None
        self._sink: StorageSink | None = None
        self._dead_letter: DeadLetterPublisher | None = None
        self._ingestor: Ingestor | None = None
        self._consumer: StorageConsumer | None = None

    @property
    def pool(self) -> DatabaseConnectionPool:
        if self._pool is None:
            self._pool = DatabaseConnectionPool.from_settings(self.settings)
        if not self._pool.is_open:
            self._pool.open()
        return self._pool

    @property
    def repository(self) -> WeatherDataRepository:
        if self._repository is None:
            self._repository = WeatherDataRepository(self.pool)
        return self._repository

    @property
    def sink(self) -> StorageSink:
        if self._sink is None:
            if self.settings.dead_letter_topic:
                self._dead_letter = DeadLetterPublisher(self.settings.dead_letter_topic, self.settings)
            self._sink = StorageSink(
                self.repository, self.settings, metrics=self.metrics, dead_letter=self._dead_letter
            )
        return self._sink

    @property
    def ingestor(self) -> Ingestor:
        if self._ingestor is None:
            self._ingestor = Ingestor(self.settings, client=self._producer_factory(), metrics=self.metrics)
        return self._ingestor

    def init_db(self) -> None:
        """Create weather_data and its indexes if missing."""
        SchemaManager(self.pool).create_schema()

    def ingest(self, path: str | Path) -> IngestionJob:
        """
        Start ingesting a CSV file in the background.

        Raises:
            FileNotFoundError: If the path does not exist
            OSError: If the file cannot be opened
        """
        return self.ingestor.ingest(path)

    def send_test_record(self):
        return self.ingestor.send_test_record()

    def start_consumer(self) -> StorageConsumer:
        """
        Start the storage consumer workers.

        Raises:
            RuntimeError: If the consumer is already running
        """
        if self._consumer is not None and self._consumer.running:
            raise RuntimeError("Storage consumer is already running")
        self._consumer = StorageConsumer(self.settings, self.sink, consumer_factory=self._consumer_factory)
        self._consumer.start()
        return self._consumer

    def stop_consumer(self, timeout: float | None = 30.0) -> None:
        if self._consumer is None:
            return
        self._consumer.stop(timeout)
        self._consumer = None

    @property
    def consumer_running(self) -> bool:
        return self._consumer is not None and self._consumer.running

    def consumer_stats(self) -> ConsumerStats:
        """
        processedCount, errorCount and the current row totals.

        Raises:
            StorageError: If the database cannot be queried
        """
        return self.sink.stats()

    def reset_counters(self) -> None:
        self.sink.reset_counters()

    def purge_processed(self, cutoff: datetime) -> int:
        """
        Delete rows flagged processed and created before ``cutoff``.

        Returns:
            Number of rows deleted
        """
        deleted = self.repository.delete_processed_before(cutoff)
        logger.info(f"Purged {deleted} processed weather records created before {cutoff.isoformat()}")
        return deleted

    def close(self) -> None:
        """Stop the consumer, drain ingests, release clients and the pool."""
        self.stop_consumer()
        if self._ingestor is not None:
            self._ingestor.close()
            self._ingestor = None
        if self._dead_letter is not None:
            self._dead_letter.close()
            self._dead_letter = None
        if self._owns_pool and self._pool is not None:
            self._pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
