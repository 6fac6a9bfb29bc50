"""
Ingestion jobs: CSV file -> WeatherProducer on a background thread.

``Ingestor.ingest(path)`` validates the path synchronously and returns an
``IngestionJob`` handle immediately; the handle reports status, waits for
completion and carries the stop signal.
"""

import threading
import time
import uuid
from datetime import datetime
from pathlib import Path

from kafka import KafkaProducer

from weather_pipeline.config import PipelineSettings
from weather_pipeline.core.errors import IngestionError
from weather_pipeline.core.models import IngestionStatus
from weather_pipeline.ingestion.readers.csv_reader import WeatherCsvReader
from weather_pipeline.observability.logger import get_logger, log_operation
from weather_pipeline.observability.metrics import MetricsCollector
from weather_pipeline.streaming.producer import WeatherProducer, create_kafka_producer

logger = get_logger(__name__)


class IngestionJob:
    """
    Handle for one running ingest.

    Usage:
        job = ingestor.ingest("/data/tanzania_weather_data.csv")
        job.status().state     # "running"
        final = job.wait()     # blocks until the producer has drained
    """

    def __init__(
        self,
        reader: WeatherCsvReader,
        producer: WeatherProducer,
        stop_event: threading.Event,
        metrics: MetricsCollector | None = None,
        job_id: str | None = None,
    ):
        """
        Args:
            reader: Opened CSV reader sharing ``stop_event``
            producer: Producer dedicated to this job
            stop_event: Cancellation signal
            metrics: Metrics collector
            job_id: Identifier (random when omitted)
        """
        self.job_id = job_id or uuid.uuid4().hex[:12]
        self.reader = reader
        self.producer = producer
        self.metrics = metrics or MetricsCollector()
        self._stop_event = stop_event
        self._done_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

        self._state = "pending"
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._error: str | None = None

    def start(self) -> "IngestionJob":
        if self._thread is not None:
            raise RuntimeError(f"Ingestion job {self.job_id} already started")
        self._thread = threading.Thread(
            target=self._run, name=f"ingest-{self.job_id}", daemon=True
        )
        self._thread.start()
        return self

    def status(self) -> IngestionStatus:
        """Snapshot of the job's progress."""
        with self._lock:
            return IngestionStatus(
                job_id=self.job_id,
                path=str(self.reader.path),
                state=self._state,
                records_read=self.reader.records_read,
                records_published=self.producer.accepted.get(),
                parse_errors=self.reader.parse_errors,
                send_failures=self.producer.failed.get(),
                started_at=self._started_at,
                finished_at=self._finished_at,
                error=self._error,
            )

    def wait(self, timeout: float | None = None, raise_on_failure: bool = True) -> IngestionStatus:
        """
        Block until the job ends (or ``timeout`` elapses).

        Returns:
            Status at return time; still "running" if the timeout elapsed

        Raises:
            IngestionError: If the job failed and raise_on_failure is set
        """
        self._done_event.wait(timeout)
        status = self.status()
        if raise_on_failure and status.state == "failed":
            raise IngestionError(f"Ingestion of {status.path} failed: {status.error}")
        return status

    def cancel(self) -> None:
        """Stop reading; records already handed to the producer are drained."""
        logger.info(f"Cancellation requested for ingestion job {self.job_id}")
        self._stop_event.set()

    @property
    def done(self) -> bool:
        return self._done_event.is_set()

    def _set_state(self, state: str, **fields) -> None:
        with self._lock:
            self._state = state
            for name, value in fields.items():
                setattr(self, f"_{name}", value)

    def _run(self) -> None:
        start = time.time()
        self._set_state("running", started_at=datetime.now())
        final_state = "failed"
        try:
            with log_operation(
                "Weather data ingestion", logger=logger,
                job_id=self.job_id, path=str(self.reader.path)
            ):
                summary = self.producer.publish_all(self.reader, stop_event=self._stop_event)
            final_state = "cancelled" if self._stop_event.is_set() else "completed"
            logger.info(
                f"Weather data ingestion {final_state}! "
                f"Total records processed: {summary.accepted}",
                extra={
                    "job_id": self.job_id,
                    "published": summary.accepted,
                    "delivered": summary.delivered,
                    "send_failures": summary.failed,
                    "parse_errors": self.reader.parse_errors,
                }
            )
            self._set_state(final_state, finished_at=datetime.now())
        except Exception as e:
            # File read errors end the job; the failure is reported through status()/wait()
            self._set_state("failed", finished_at=datetime.now(), error=f"{type(e).__name__}: {e}")
        finally:
            self.reader.close()
            self.metrics.record_job_finished(final_state, time.time() - start)
            self._done_event.set()


class Ingestor:
    """
    Launches ingestion jobs that share one Kafka producer client.

    Finished jobs stay available through get_job() until more than
    ``max_finished_jobs`` of them have accumulated; the oldest go first.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        client: KafkaProducer | None = None,
        metrics: MetricsCollector | None = None,
        max_finished_jobs: int = 100,
    ):
        """
        Args:
            settings: Pipeline settings
            client: Shared producer client (created on first ingest when omitted)
            metrics: Metrics collector
            max_finished_jobs: Finished job handles kept for lookup
        """
        self.settings = settings
        self.metrics = metrics or MetricsCollector()
        self.max_finished_jobs = max_finished_jobs
        self._client = client
        self._jobs: dict[str, IngestionJob] = {}

    def _get_client(self) -> KafkaProducer:
        if self._client is None:
            self._client = create_kafka_producer(self.settings)
        return self._client

    def ingest(self, path: str | Path) -> IngestionJob:
        """
        Start ingesting ``path`` and return immediately.

        Raises:
            FileNotFoundError: If the file does not exist
            OSError: If the file cannot be opened
        """
        stop_event = threading.Event()
        reader = WeatherCsvReader(path, stop_event=stop_event, metrics=self.metrics).open()
        producer = WeatherProducer(self.settings, client=self._get_client(), metrics=self.metrics)
        job = IngestionJob(reader, producer, stop_event, metrics=self.metrics)
        self._prune_finished()
        self._jobs[job.job_id] = job
        logger.info(f"Starting weather data ingestion from: {reader.path}", extra={"job_id": job.job_id})
        return job.start()

    def _prune_finished(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if job.done]
        for job_id in finished[:max(0, len(finished) - self.max_finished_jobs)]:
            del self._jobs[job_id]

    def get_job(self, job_id: str) -> IngestionJob | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[IngestionJob]:
        return list(self._jobs.values())

    def send_test_record(self):
        producer = WeatherProducer(self.settings, client=self._get_client(), metrics=self.metrics)
        future = producer.send_test_record()
        producer.flush()
        return future

    def close(self) -> None:
        """Cancel running jobs, wait for them to drain, close the client."""
        for job in self._jobs.values():
            if not job.done:
                job.cancel()
        for job in self._jobs.values():
            job.wait(raise_on_failure=False)
        if self._client is not None:
            self._client.close()
            self._client = None
