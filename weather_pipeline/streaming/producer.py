"""
Kafka producer publishing weather records keyed by city.

Sends are asynchronous: the reader is never blocked on broker
acknowledgement, only on client buffer capacity. Delivery failures are
logged from the completion callback and not retried here; the client's
own retry settings cover transient broker errors.
"""

import time
import threading
from datetime import datetime
from typing import Iterable

from kafka import KafkaProducer
from kafka.errors import KafkaError

from weather_pipeline.config import PipelineSettings
from weather_pipeline.core.codec import encode
from weather_pipeline.core.models import PublishSummary, WeatherRecord
from weather_pipeline.observability.counters import AtomicCounter
from weather_pipeline.observability.logger import get_logger
from weather_pipeline.observability.metrics import MetricsCollector

logger = get_logger(__name__)


def create_kafka_producer(settings: PipelineSettings) -> KafkaProducer:
    """
    Build the underlying kafka-python producer.

    One in-flight request per connection keeps retried batches from
    overtaking later ones, so records for a city stay in publish order.
    """
    return KafkaProducer(
        bootstrap_servers=settings.bootstrap_servers(),
        client_id="weather-ingestor",
        key_serializer=lambda key: key.encode("utf-8"),
        value_serializer=lambda value: value.encode("utf-8"),
        acks="all",
        retries=5,
        max_in_flight_requests_per_connection=1,
        linger_ms=5,
        batch_size=64 * 1024,
    )


class WeatherProducer:
    """
    Publishes WeatherRecords to the weather topic.

    Key = city (partition assignment), value = one-line JSON from
    core.codec.encode().
    """

    def __init__(
        self,
        settings: PipelineSettings,
        client: KafkaProducer | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Args:
            settings: Pipeline settings (topic, brokers, progress interval)
            client: Pre-built producer client (created from settings when omitted)
            metrics: Metrics collector
        """
        self.settings = settings
        self.topic = settings.topic
        self.progress_interval = settings.producer_progress_interval
        self.metrics = metrics or MetricsCollector()
        self._client = client if client is not None else create_kafka_producer(settings)

        self.accepted = AtomicCounter()
        self.delivered = AtomicCounter()
        self.failed = AtomicCounter()

    def publish(self, record: WeatherRecord):
        """
        Send one record without waiting for acknowledgement.

        Returns:
            The client's future; a callback counts delivery and an errback
            logs failure.

        Raises:
            KafkaError: If the client refuses the record (e.g. buffer full
                beyond max_block_ms)
        """
        future = self._client.send(self.topic, key=record.partition_key, value=encode(record))
        future.add_callback(self._on_delivered)
        future.add_errback(self._on_send_error, record)
        self.accepted.increment()
        self.metrics.record_published(self.topic)
        return future

    def publish_all(
        self,
        records: Iterable[WeatherRecord],
        stop_event: threading.Event | None = None,
        flush_timeout: float | None = None,
    ) -> PublishSummary:
        """
        Publish every record of a sequence, then drain in-flight messages.

        Args:
            records: Record sequence (consumed once)
            stop_event: When set, stop taking new records and drain
            flush_timeout: Seconds to wait for the drain (None = no limit)

        Returns:
            PublishSummary for this call
        """
        start = time.time()
        accepted_before = self.accepted.get()
        delivered_before = self.delivered.get()
        failed_before = self.failed.get()

        try:
            for record in records:
                if stop_event is not None and stop_event.is_set():
                    logger.info("Stop requested, no further records will be published")
                    break
                try:
                    self.publish(record)
                except KafkaError as e:
                    self.failed.increment()
                    self.metrics.record_publish_failure(self.topic)
                    logger.error(
                        f"Error sending weather record to Kafka for city {record.city}: {e}",
                        extra={"city": record.city}
                    )
                    continue

                count = self.accepted.get() - accepted_before
                if count % self.progress_interval == 0:
                    logger.info(f"Processed {count} weather records...", extra={"count": count})
        finally:
            self.flush(flush_timeout)

        return PublishSummary(
            accepted=self.accepted.get() - accepted_before,
            delivered=self.delivered.get() - delivered_before,
            failed=self.failed.get() - failed_before,
            duration_seconds=round(time.time() - start, 3),
        )

    def send_test_record(self):
        """Publish the canonical Mbeya observation stamped with the current time."""
        record = WeatherRecord(
            timestamp=datetime.now(),
            city="Mbeya",
            temperature=18.5,
            humidity=75.0,
            rainfall=0.2,
            wind_speed=12.5,
            pressure=1015.3,
        )
        future = self.publish(record)
        logger.info(f"Sent single weather record: {record.city}")
        return future

    def flush(self, timeout: float | None = None) -> None:
        """Block until every buffered record is acknowledged or failed."""
        self._client.flush(timeout=timeout)

    def close(self, timeout: float | None = None) -> None:
        self._client.close(timeout=timeout)

    def _on_delivered(self, metadata) -> None:
        self.delivered.increment()
        logger.debug(
            f"Delivered to {metadata.topic}[{metadata.partition}]@{metadata.offset}"
        )

    def _on_send_error(self, record: WeatherRecord, exc: BaseException) -> None:
        self.failed.increment()
        self.metrics.record_publish_failure(self.topic)
        logger.error(
            f"Failed to send weather record for city: {record.city}: {exc}",
            extra={"city": record.city, "observed_at": record.timestamp.isoformat()}
        )
