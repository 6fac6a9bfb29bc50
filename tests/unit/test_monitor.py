"""
Unit tests for the read-only monitoring consumer.
"""

from types import SimpleNamespace

from kafka import TopicPartition
from kafka.errors import KafkaError

from weather_pipeline.streaming.monitor import UNKNOWN_CITY, MonitoringConsumer, extract_city


class FakeKafkaConsumer:
    def __init__(self, batches=()):
        self.batches = list(batches)
        self.committed = False
        self.closed = False

    def poll(self, timeout_ms=0, max_records=None):
        if not self.batches:
            return {}
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    def commit(self):
        self.committed = True

    def close(self, autocommit=True):
        self.closed = True
        self.close_autocommit = autocommit


class TestExtractCity:
    """Tests for extract_city()"""

    def test_city_from_payload(self):
        """Test reading the city field"""
        assert extract_city(b'{"city":"Arusha","temperature":20.1}') == "Arusha"

    def test_unknown_for_garbage(self):
        """Test fallbacks for undecodable payloads"""
        assert extract_city(None) == UNKNOWN_CITY
        assert extract_city(b"{not json") == UNKNOWN_CITY
        assert extract_city(b"[1, 2]") == UNKNOWN_CITY
        assert extract_city(b'{"city": ""}') == UNKNOWN_CITY
        assert extract_city(b'{"city": 7}') == UNKNOWN_CITY


class TestMonitoringConsumer:
    """Tests for MonitoringConsumer"""

    def test_counts_per_city(self, settings):
        """Test tallying a fetched batch"""
        tp = TopicPartition("weather-data", 0)
        batch = {tp: [
            SimpleNamespace(value=b'{"city":"Mbeya"}'),
            SimpleNamespace(value=b'{"city":"Dodoma"}'),
            SimpleNamespace(value=b'{"city":"Mbeya"}'),
            SimpleNamespace(value=b"garbage"),
        ]}
        monitor = MonitoringConsumer(settings, consumer=FakeKafkaConsumer([batch]))

        assert monitor.poll_once() == 4
        assert monitor.city_counts() == {"Mbeya": 2, "Dodoma": 1, UNKNOWN_CITY: 1}

    def test_never_commits(self, settings):
        """Test that monitoring leaves no offsets behind"""
        tp = TopicPartition("weather-data", 0)
        consumer = FakeKafkaConsumer([{tp: [SimpleNamespace(value=b'{"city":"Mbeya"}')]}])
        monitor = MonitoringConsumer(settings, consumer=consumer)

        monitor.poll_once()
        monitor.stop()
        monitor.run()

        assert not consumer.committed
        assert consumer.closed
        assert consumer.close_autocommit is False

    def test_poll_error_survived(self, settings):
        """Test that fetch failures are logged and skipped"""
        monitor = MonitoringConsumer(settings, consumer=FakeKafkaConsumer([KafkaError("down")]))
        assert monitor.poll_once() == 0

    def test_uses_monitor_group(self, settings):
        """Test that the monitoring group is separate from storage"""
        monitor = MonitoringConsumer(settings, consumer=FakeKafkaConsumer())
        assert monitor.group_id == "weather-storage-monitoring-group"
        assert monitor.group_id != settings.storage_group_id
