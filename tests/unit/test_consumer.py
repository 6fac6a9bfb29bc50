"""
Unit tests for the storage consumer poll loop.

KafkaConsumer is replaced by a scripted fake that records seek/commit
calls so that offset handling can be checked message by message.
"""

import threading
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from kafka import TopicPartition
from kafka.errors import CommitFailedError, KafkaError

from weather_pipeline.streaming.consumer import PartitionWorker, StorageConsumer, create_kafka_consumer
from weather_pipeline.streaming.sinks import SinkOutcome

TOPIC = "weather-data"


def message(offset, value=b"{}", key=b"Mbeya"):
    return SimpleNamespace(offset=offset, key=key, value=value)


class FakeKafkaConsumer:
    """Returns scripted batches from poll() and records offset calls"""

    def __init__(self, batches=()):
        self.batches = list(batches)
        self.events = []
        self.closed = False
        self.close_autocommit = None

    def poll(self, timeout_ms=0, max_records=None):
        if self.batches:
            batch = self.batches.pop(0)
            if isinstance(batch, Exception):
                raise batch
            return batch
        time.sleep(0.01)
        return {}

    def seek(self, tp, offset):
        self.events.append(("seek", tp.partition, offset))

    def commit(self):
        self.events.append(("commit",))

    def close(self, autocommit=True):
        self.closed = True
        self.close_autocommit = autocommit


class ScriptedSink:
    """Returns outcomes by message value; records handled offsets"""

    def __init__(self, outcomes=None, on_handle=None):
        self.outcomes = outcomes or {}
        self.on_handle = on_handle
        self.handled = []

    def handle(self, value, key=None, partition=None, offset=None):
        self.handled.append((partition, offset))
        if self.on_handle is not None:
            self.on_handle(partition, offset)
        return self.outcomes.get((partition, offset), SinkOutcome.PERSISTED)


def make_worker(consumer, sink, stop_event=None):
    return PartitionWorker(
        name="storage-worker-0",
        consumer=consumer,
        sink=sink,
        stop_event=stop_event or threading.Event(),
        poll_timeout_ms=10,
        retry_backoff_seconds=0.0,
    )


class TestPartitionWorker:
    """Tests for PartitionWorker.poll_once()"""

    def test_in_order_then_commit(self):
        """Test that messages are handled in order and committed once"""
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(0), message(1), message(2)]}])
        sink = ScriptedSink()
        worker = make_worker(consumer, sink)

        assert worker.poll_once() is False

        assert sink.handled == [(0, 0), (0, 1), (0, 2)]
        assert consumer.events == [("commit",)]
        assert worker.messages_handled == 3

    def test_dropped_message_advances(self):
        """Test that a dropped message does not block the partition"""
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(0), message(1)]}])
        sink = ScriptedSink({(0, 0): SinkOutcome.DROPPED})
        worker = make_worker(consumer, sink)

        worker.poll_once()

        assert sink.handled == [(0, 0), (0, 1)]
        assert consumer.events == [("commit",)]

    def test_retry_rewinds_before_commit(self):
        """Test that a retry seeks back to the failed message before committing"""
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(5), message(6), message(7)]}])
        sink = ScriptedSink({(0, 6): SinkOutcome.RETRY})
        worker = make_worker(consumer, sink)

        assert worker.poll_once() is True

        assert sink.handled == [(0, 5), (0, 6)]
        assert consumer.events == [("seek", 0, 6), ("commit",)]
        assert worker.messages_handled == 1

    def test_retry_on_one_partition_does_not_block_another(self):
        """Test that partitions progress independently"""
        tp0 = TopicPartition(TOPIC, 0)
        tp1 = TopicPartition(TOPIC, 1)
        consumer = FakeKafkaConsumer([{tp0: [message(0), message(1)], tp1: [message(0), message(1)]}])
        sink = ScriptedSink({(0, 0): SinkOutcome.RETRY})
        worker = make_worker(consumer, sink)

        worker.poll_once()

        assert sink.handled == [(0, 0), (1, 0), (1, 1)]
        assert consumer.events == [("seek", 0, 0), ("commit",)]

    def test_stop_mid_batch(self):
        """Test that a stop finishes the in-flight message and rewinds the rest"""
        tp = TopicPartition(TOPIC, 0)
        stop_event = threading.Event()
        consumer = FakeKafkaConsumer([{tp: [message(0), message(1), message(2)]}])
        sink = ScriptedSink(on_handle=lambda partition, offset: stop_event.set())
        worker = make_worker(consumer, sink, stop_event)

        worker.poll_once()

        assert sink.handled == [(0, 0)]
        assert consumer.events == [("seek", 0, 1), ("commit",)]

    def test_empty_poll_does_not_commit(self):
        """Test that an empty fetch commits nothing"""
        consumer = FakeKafkaConsumer([{}])
        worker = make_worker(consumer, ScriptedSink())
        worker.poll_once()
        assert consumer.events == []

    def test_poll_error_is_survived(self):
        """Test that a fetch failure backs off instead of raising"""
        consumer = FakeKafkaConsumer([KafkaError("coordinator not available")])
        worker = make_worker(consumer, ScriptedSink())
        assert worker.poll_once() is False
        assert consumer.events == []

    def test_commit_failure_is_logged(self, caplog):
        """Test that a failed commit does not crash the worker"""
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(0)]}])

        def failing_commit():
            raise CommitFailedError("rebalanced")

        consumer.commit = failing_commit
        worker = make_worker(consumer, ScriptedSink())

        worker.poll_once()

        assert any("offset commit failed" in r.getMessage() for r in caplog.records)

    def test_run_closes_without_autocommit(self):
        """Test that run() exits on stop and closes the client"""
        stop_event = threading.Event()
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(0)]}])
        sink = ScriptedSink(on_handle=lambda partition, offset: stop_event.set())
        worker = make_worker(consumer, sink, stop_event)

        worker.run()

        assert consumer.closed
        assert consumer.close_autocommit is False
        assert consumer.events == [("commit",)]


class TestStorageConsumer:
    """Tests for StorageConsumer worker management"""

    def test_start_and_stop(self, settings):
        """Test that one worker per configured slot is started and stopped"""
        settings = settings.model_copy(update={"consumer_concurrency": 2})
        created = []

        def factory(group_id, client_id):
            consumer = FakeKafkaConsumer()
            created.append((group_id, client_id, consumer))
            return consumer

        storage = StorageConsumer(settings, ScriptedSink(), consumer_factory=factory)
        storage.start()
        assert storage.running

        storage.stop(timeout=5)

        assert not storage.running
        assert [(g, c) for g, c, _ in created] == [
            ("weather-storage-group", "storage-worker-0"),
            ("weather-storage-group", "storage-worker-1"),
        ]
        assert all(consumer.closed for _, _, consumer in created)

    def test_start_twice_rejected(self, settings):
        """Test that a running consumer cannot be started again"""
        storage = StorageConsumer(settings, ScriptedSink(), consumer_factory=lambda g, c: FakeKafkaConsumer())
        storage.start()
        try:
            with pytest.raises(RuntimeError):
                storage.start()
        finally:
            storage.stop(timeout=5)

    def test_worker_crash_recorded(self, settings):
        """Test that an unexpected worker exception is captured"""
        consumer = FakeKafkaConsumer([RuntimeError("boom")])
        storage = StorageConsumer(settings, ScriptedSink(), consumer_factory=lambda g, c: consumer)
        storage.start()
        storage.wait(timeout=5)

        assert len(storage.failures) == 1
        assert consumer.closed
        storage.stop(timeout=5)

    def test_messages_reach_shared_sink(self, settings):
        """Test end-to-end flow from fake fetch to sink"""
        tp = TopicPartition(TOPIC, 0)
        consumer = FakeKafkaConsumer([{tp: [message(0), message(1)]}])
        sink = ScriptedSink()
        storage = StorageConsumer(settings, sink, consumer_factory=lambda g, c: consumer)

        storage.start()
        deadline = time.time() + 5
        while len(sink.handled) < 2 and time.time() < deadline:
            time.sleep(0.01)
        storage.stop(timeout=5)

        assert sink.handled == [(0, 0), (0, 1)]
        assert ("commit",) in consumer.events


class TestCreateKafkaConsumer:
    """Tests for the client factory"""

    def test_manual_commit(self, settings):
        """Test that auto-commit is disabled and the group is set"""
        with patch("weather_pipeline.streaming.consumer.KafkaConsumer") as kafka_consumer:
            create_kafka_consumer(settings, "weather-storage-group", "storage-worker-0")

        args, kwargs = kafka_consumer.call_args
        assert args == ("weather-data",)
        assert kwargs["group_id"] == "weather-storage-group"
        assert kwargs["enable_auto_commit"] is False
        assert kwargs["auto_offset_reset"] == "earliest"
