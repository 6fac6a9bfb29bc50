"""
Unit tests for the storage sink.

The repository is an in-memory fake so that counters, milestones and
failure dispositions can be checked without a database.
"""

import logging
import threading
from datetime import datetime
from unittest.mock import MagicMock

import psycopg
import pytest

from weather_pipeline.core.codec import encode_bytes
from weather_pipeline.core.errors import PersistenceError, StorageError, TransientStorageError
from weather_pipeline.core.models import WeatherRecord, WeatherRow
from weather_pipeline.streaming.sinks import SinkOutcome, StorageSink


class FakeRepository:
    """In-memory stand-in for WeatherDataRepository"""

    def __init__(self):
        self.rows: list[WeatherRow] = []
        self.fail_with: Exception | None = None
        self._lock = threading.Lock()

    def insert(self, record, created_at=None):
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            row = WeatherRow(
                **record.model_dump(),
                id=len(self.rows) + 1,
                created_at=created_at or datetime.now(),
            )
            self.rows.append(row)
        return row

    def count_all(self):
        return len(self.rows)

    def count_unprocessed(self):
        return sum(1 for row in self.rows if not row.processed)


def payload(city="Mbeya", hour=8) -> bytes:
    return encode_bytes(WeatherRecord(
        timestamp=datetime(2024, 3, 15, hour, 0, 0),
        city=city,
        temperature=18.5,
        humidity=75.0,
        rainfall=0.2,
        wind_speed=12.5,
        pressure=1015.3,
    ))


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def sink(repository, settings):
    return StorageSink(repository, settings)


class TestHandle:
    """Tests for message handling dispositions"""

    def test_good_message_persisted(self, sink, repository):
        """Test that a valid message becomes a row"""
        assert sink.handle(payload()) is SinkOutcome.PERSISTED
        assert len(repository.rows) == 1
        assert repository.rows[0].processed is False
        assert sink.processed_count.get() == 1
        assert sink.error_count.get() == 0

    def test_undecodable_message_dropped(self, sink, repository, caplog):
        """Test that a poison message is dropped and counted"""
        with caplog.at_level(logging.ERROR, logger="weather_pipeline"):
            outcome = sink.handle(b"{not json", partition=0, offset=41)

        assert outcome is SinkOutcome.DROPPED
        assert outcome.advances_offset
        assert repository.rows == []
        assert sink.error_count.get() == 1
        assert sink.processed_count.get() == 0
        assert any("Error processing weather data message" in r.getMessage() for r in caplog.records)

    def test_nul_city_dropped_not_retried(self, sink, repository):
        """Test that a city PostgreSQL cannot store is dropped instead of retried"""
        message = (
            b'{"timestamp":"2024-03-15T08:00:00","city":"Mb\\u0000ya","temperature":18.5,'
            b'"humidity":75.0,"rainfall":0.20,"windSpeed":12.5,"pressure":1015.3}'
        )

        repository.fail_with = PersistenceError("PostgreSQL text fields cannot contain NUL (0x00) bytes")

        outcome = sink.handle(message, partition=0, offset=7)

        assert outcome is SinkOutcome.DROPPED
        assert outcome.advances_offset
        assert sink.error_count.get() == 1

    def test_dropped_message_forwarded_to_dead_letter(self, repository, settings):
        """Test that dropped messages go to the dead-letter publisher"""
        dead_letter = MagicMock()
        sink = StorageSink(repository, settings, dead_letter=dead_letter)

        sink.handle(b'{"city":"Mbeya"}', key=b"Mbeya")

        dead_letter.forward.assert_called_once()
        key, value, reason = dead_letter.forward.call_args.args
        assert key == b"Mbeya"
        assert value == b'{"city":"Mbeya"}'
        assert "missing" in reason

    def test_persistence_error_retries_and_counts(self, sink, repository):
        """Test that a persistence failure withholds the offset"""
        repository.fail_with = PersistenceError("constraint violated")

        outcome = sink.handle(payload())

        assert outcome is SinkOutcome.RETRY
        assert not outcome.advances_offset
        assert sink.error_count.get() == 1
        assert sink.processed_count.get() == 0

    def test_transient_error_retries_without_counting(self, sink, repository):
        """Test that database unavailability is not an error count"""
        repository.fail_with = TransientStorageError("connection refused")

        assert sink.handle(payload()) is SinkOutcome.RETRY
        assert sink.error_count.get() == 0

    def test_redelivery_creates_duplicate(self, sink, repository):
        """Test that the same message twice yields two rows"""
        sink.handle(payload())
        sink.handle(payload())
        assert len(repository.rows) == 2
        assert repository.rows[0].id != repository.rows[1].id
        assert repository.rows[0].to_record() == repository.rows[1].to_record()


class TestMilestones:
    """Tests for milestone logging"""

    def test_store_log_every_interval(self, sink, caplog):
        """Test the latest-record log every sink_log_interval inserts"""
        with caplog.at_level(logging.INFO, logger="weather_pipeline"):
            for hour in range(5):
                sink.handle(payload(hour=hour))

        stored = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Stored")]
        assert len(stored) == 2
        assert stored[0].startswith("Stored 2 weather records in database. Latest: Mbeya - 2024-03-15T01:00:00")

    def test_status_checkpoint(self, sink, caplog):
        """Test the database status log every sink_status_interval inserts"""
        with caplog.at_level(logging.INFO, logger="weather_pipeline"):
            for hour in range(4):
                sink.handle(payload(hour=hour))

        status = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Database Status")]
        assert status == ["Database Status - Total: 4, Unprocessed: 4, Error Count: 0"]

    def test_status_checkpoint_survives_db_failure(self, sink, repository):
        """Test that a failing status query does not fail the insert"""
        repository.count_all = MagicMock(side_effect=psycopg.OperationalError("gone"))
        for hour in range(4):
            assert sink.handle(payload(hour=hour)) is SinkOutcome.PERSISTED
        assert sink.log_status() is None


class TestStats:
    """Tests for stats() and reset_counters()"""

    def test_stats(self, sink):
        """Test counters combined with database totals"""
        sink.handle(payload())
        sink.handle(b"garbage")

        stats = sink.stats()

        assert stats.processed == 1
        assert stats.errors == 1
        assert stats.total_rows == 1
        assert stats.unprocessed_rows == 1

    def test_stats_wraps_database_errors(self, sink, repository):
        """Test that query failures surface as StorageError"""
        repository.count_all = MagicMock(side_effect=psycopg.OperationalError("gone"))
        with pytest.raises(StorageError):
            sink.stats()

    def test_reset_is_idempotent(self, sink):
        """Test that resetting twice leaves both counters at zero"""
        sink.handle(payload())
        sink.handle(b"garbage")

        sink.reset_counters()
        sink.reset_counters()

        assert sink.processed_count.get() == 0
        assert sink.error_count.get() == 0

    def test_reset_keeps_rows(self, sink, repository):
        """Test that reset does not touch persisted rows"""
        sink.handle(payload())
        sink.reset_counters()
        assert sink.stats().total_rows == 1

    def test_concurrent_handles_count_exactly(self, sink):
        """Test that counters stay exact across worker threads"""
        def work():
            for hour in range(50):
                sink.handle(payload(hour=hour % 24))
                sink.handle(b"garbage")

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sink.processed_count.get() == 200
        assert sink.error_count.get() == 200
