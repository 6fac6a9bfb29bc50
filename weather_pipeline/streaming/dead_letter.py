"""
Dead-letter forwarding for messages the storage consumer cannot decode.
"""

from kafka import KafkaProducer
from kafka.errors import KafkaError

from weather_pipeline.config import PipelineSettings
from weather_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

DROP_REASON_HEADER = "x-drop-reason"


class DeadLetterPublisher:
    """
    Copies rejected messages, unchanged, to a dead-letter topic.

    Forwarding is best effort: a failed forward is logged and the message
    is still dropped, so a poison message can never stall a partition.
    """

    def __init__(
        self,
        topic: str,
        settings: PipelineSettings,
        client: KafkaProducer | None = None,
        send_timeout: float = 10.0,
    ):
        self.topic = topic
        self.send_timeout = send_timeout
        self._client = client if client is not None else KafkaProducer(
            bootstrap_servers=settings.bootstrap_servers(),
            client_id="weather-dead-letter",
            acks="all",
            retries=3,
        )

    def forward(self, key: bytes | None, value: bytes | None, reason: str) -> bool:
        """
        Send the raw message to the dead-letter topic and wait for the ack.

        Returns:
            True when the broker acknowledged the copy
        """
        try:
            future = self._client.send(
                self.topic,
                key=key,
                value=value,
                headers=[(DROP_REASON_HEADER, reason.encode("utf-8"))],
            )
            future.get(timeout=self.send_timeout)
            return True
        except KafkaError as e:
            logger.error(f"Could not forward message to dead-letter topic {self.topic}: {e}")
            return False

    def close(self) -> None:
        self._client.close()
