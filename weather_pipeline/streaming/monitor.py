"""
Read-only monitoring consumer.

Subscribes under its own group so it sees every message without touching
the storage group's offsets. It never commits.
"""

import json
import threading
from collections import Counter

from kafka import KafkaConsumer
from kafka.errors import KafkaError

from weather_pipeline.config import PipelineSettings
from weather_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_CITY = "Unknown"


def extract_city(value: bytes | str | None) -> str:
    """City named in a message payload, or "Unknown"."""
    if value is None:
        return UNKNOWN_CITY
    try:
        data = json.loads(value)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return UNKNOWN_CITY
    city = data.get("city") if isinstance(data, dict) else None
    if not isinstance(city, str) or not city.strip():
        return UNKNOWN_CITY
    return city


class MonitoringConsumer:
    """
    Tallies messages per city for observability.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        consumer: KafkaConsumer | None = None,
    ):
        self.settings = settings
        self.group_id = settings.monitor_group_id
        self.consumer = consumer if consumer is not None else KafkaConsumer(
            settings.topic,
            bootstrap_servers=settings.bootstrap_servers(),
            group_id=self.group_id,
            client_id="weather-monitor",
            enable_auto_commit=False,
            auto_offset_reset="latest",
        )
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._city_counts: Counter = Counter()

    def observe(self, value: bytes | str | None) -> str:
        city = extract_city(value)
        with self._lock:
            self._city_counts[city] += 1
        if city == UNKNOWN_CITY:
            logger.warning("Could not extract city from message for monitoring")
        else:
            logger.debug(f"Weather data received for city: {city}")
        return city

    def poll_once(self) -> int:
        """
        Observe one fetched batch.

        Returns:
            Number of messages observed
        """
        try:
            batches = self.consumer.poll(timeout_ms=self.settings.consumer_poll_timeout_ms)
        except KafkaError as e:
            logger.error(f"Monitoring poll failed: {e}")
            return 0

        observed = 0
        for messages in batches.values():
            for message in messages:
                self.observe(message.value)
                observed += 1
        return observed

    def run(self) -> None:
        """Poll until stop() is called."""
        logger.info(f"Monitoring consumer started: group={self.group_id}")
        try:
            while not self._stop_event.is_set():
                self.poll_once()
        finally:
            self.consumer.close(autocommit=False)
            logger.info("Monitoring consumer stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def city_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._city_counts)
