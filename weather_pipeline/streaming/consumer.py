"""
Storage consumer: weather topic -> StorageSink -> weather_data.

Each worker thread owns one KafkaConsumer in the storage group; the
group coordinator assigns partitions to workers. Inside a worker,
messages are handled strictly in delivery order and offsets are
committed only after the corresponding insert transactions committed.
"""

import threading
from typing import Callable

from kafka import KafkaConsumer
from kafka.errors import KafkaError

from weather_pipeline.config import PipelineSettings
from weather_pipeline.observability.logger import get_logger
from weather_pipeline.streaming.sinks.storage_sink import StorageSink

logger = get_logger(__name__)

ConsumerFactory = Callable[[str, str], KafkaConsumer]


def create_kafka_consumer(settings: PipelineSettings, group_id: str, client_id: str) -> KafkaConsumer:
    """
    Build a manually-committing consumer subscribed to the weather topic.

    Args:
        settings: Pipeline settings
        group_id: Consumer group
        client_id: Client identifier (shows up in broker logs)
    """
    return KafkaConsumer(
        settings.topic,
        bootstrap_servers=settings.bootstrap_servers(),
        group_id=group_id,
        client_id=client_id,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
        max_poll_records=settings.consumer_max_poll_records,
    )


class PartitionWorker:
    """
    Poll loop for one KafkaConsumer in the storage group.

    The loop never spawns work: one message at a time, in order, per
    assigned partition.
    """

    def __init__(
        self,
        name: str,
        consumer: KafkaConsumer,
        sink: StorageSink,
        stop_event: threading.Event,
        poll_timeout_ms: int = 1000,
        retry_backoff_seconds: float = 1.0,
    ):
        self.name = name
        self.consumer = consumer
        self.sink = sink
        self.stop_event = stop_event
        self.poll_timeout_ms = poll_timeout_ms
        self.retry_backoff_seconds = retry_backoff_seconds
        self.messages_handled = 0

    def run(self) -> None:
        """Poll until the stop event is set, then commit and close."""
        logger.info(f"{self.name} started")
        try:
            while not self.stop_event.is_set():
                self.poll_once()
        finally:
            self.consumer.close(autocommit=False)
            logger.info(f"{self.name} stopped after {self.messages_handled} messages")

    def poll_once(self) -> bool:
        """
        Fetch one batch, hand each message to the sink, commit.

        When the sink asks for a retry, or a stop is requested mid-batch,
        the partition is rewound to the first message that was not
        handled so that the commit does not skip it.

        Returns:
            True when the batch requested a retry
        """
        try:
            batches = self.consumer.poll(timeout_ms=self.poll_timeout_ms)
        except KafkaError as e:
            logger.error(f"{self.name} poll failed: {e}")
            self.stop_event.wait(self.retry_backoff_seconds)
            return False

        if not batches:
            return False

        retry = False
        for tp, messages in batches.items():
            for message in messages:
                if self.stop_event.is_set():
                    self.consumer.seek(tp, message.offset)
                    break

                logger.debug(
                    f"Received weather data - Key: {message.key!r}, "
                    f"Partition: {tp.partition}, Offset: {message.offset}"
                )
                outcome = self.sink.handle(
                    message.value,
                    key=message.key,
                    partition=tp.partition,
                    offset=message.offset,
                )
                if not outcome.advances_offset:
                    self.consumer.seek(tp, message.offset)
                    retry = True
                    break
                self.messages_handled += 1

        self._commit()

        if retry:
            self.stop_event.wait(self.retry_backoff_seconds)
        return retry

    def _commit(self) -> None:
        try:
            self.consumer.commit()
        except KafkaError as e:
            # Uncommitted messages are redelivered after the rebalance
            logger.warning(f"{self.name} offset commit failed: {e}")


class StorageConsumer:
    """
    Runs ``consumer_concurrency`` PartitionWorkers in the storage group.

    Usage:
        consumer = StorageConsumer(settings, sink)
        consumer.start()
        ...
        consumer.stop()
    """

    def __init__(
        self,
        settings: PipelineSettings,
        sink: StorageSink,
        consumer_factory: ConsumerFactory | None = None,
    ):
        """
        Args:
            settings: Pipeline settings
            sink: Shared storage sink
            consumer_factory: (group_id, client_id) -> KafkaConsumer; defaults
                to create_kafka_consumer
        """
        self.settings = settings
        self.sink = sink
        self.group_id = settings.storage_group_id
        self._consumer_factory = consumer_factory or (
            lambda group_id, client_id: create_kafka_consumer(settings, group_id, client_id)
        )
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self.workers: list[PartitionWorker] = []
        self.failures: list[BaseException] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """
        Create the workers and start their threads.

        Raises:
            RuntimeError: If the consumer is already running
        """
        if self.running:
            raise RuntimeError("Storage consumer is already running")

        self._stop_event.clear()
        self._threads = []
        self.workers = []
        self.failures = []

        for index in range(self.settings.consumer_concurrency):
            name = f"storage-worker-{index}"
            worker = PartitionWorker(
                name=name,
                consumer=self._consumer_factory(self.group_id, name),
                sink=self.sink,
                stop_event=self._stop_event,
                poll_timeout_ms=self.settings.consumer_poll_timeout_ms,
                retry_backoff_seconds=self.settings.consumer_retry_backoff_seconds,
            )
            thread = threading.Thread(target=self._run_worker, args=(worker,), name=name, daemon=True)
            self.workers.append(worker)
            self._threads.append(thread)
            thread.start()

        logger.info(
            f"Storage consumer started: group={self.group_id}, topic={self.settings.topic}, "
            f"workers={len(self.workers)}"
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        """
        Ask workers to finish their in-flight message, commit and exit.

        Args:
            timeout: Seconds to wait for each worker thread
        """
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        still_running = [thread.name for thread in self._threads if thread.is_alive()]
        if still_running:
            logger.warning(f"Workers did not stop in time: {', '.join(still_running)}")
        else:
            logger.info("Storage consumer stopped")

    def wait(self, timeout: float | None = None) -> None:
        """Block until every worker thread has exited."""
        for thread in self._threads:
            thread.join(timeout)

    def _run_worker(self, worker: PartitionWorker) -> None:
        try:
            worker.run()
        except Exception as e:
            self.failures.append(e)
            logger.error(f"{worker.name} crashed: {e}", exc_info=True)
