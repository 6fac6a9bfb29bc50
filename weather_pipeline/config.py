"""
Runtime configuration.

Settings come from environment variables (optionally loaded from a .env
file by the CLI) and may be overridden by a YAML file.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_TOPIC = "weather-data"
DEFAULT_STORAGE_GROUP = "weather-storage-group"
DEFAULT_MONITOR_GROUP = "weather-storage-monitoring-group"

# field name -> (env var, converter)
_ENV_VARS: dict[str, tuple[str, Any]] = {
    "kafka_bootstrap_servers": ("KAFKA_BOOTSTRAP_SERVERS", str),
    "topic": ("WEATHER_TOPIC", str),
    "storage_group_id": ("STORAGE_GROUP_ID", str),
    "monitor_group_id": ("MONITOR_GROUP_ID", str),
    "dead_letter_topic": ("DEAD_LETTER_TOPIC", str),
    "consumer_concurrency": ("CONSUMER_CONCURRENCY", int),
    "consumer_poll_timeout_ms": ("CONSUMER_POLL_TIMEOUT_MS", int),
    "consumer_max_poll_records": ("CONSUMER_MAX_POLL_RECORDS", int),
    "consumer_retry_backoff_seconds": ("CONSUMER_RETRY_BACKOFF_SECONDS", float),
    "producer_progress_interval": ("PRODUCER_PROGRESS_INTERVAL", int),
    "sink_log_interval": ("SINK_LOG_INTERVAL", int),
    "sink_status_interval": ("SINK_STATUS_INTERVAL", int),
    "db_host": ("DB_HOST", str),
    "db_port": ("DB_PORT", int),
    "db_name": ("DB_NAME", str),
    "db_user": ("DB_USER", str),
    "db_password": ("DB_PASSWORD", str),
    "db_pool_min_size": ("DB_POOL_MIN_SIZE", int),
    "db_pool_max_size": ("DB_POOL_MAX_SIZE", int),
    "log_level": ("LOG_LEVEL", str),
    "log_format": ("LOG_FORMAT", str),
    "metrics_port": ("METRICS_PORT", int),
}


class PipelineSettings(BaseModel):
    """
    All tunables for ingestor, consumer and sink.

    Attributes:
        kafka_bootstrap_servers: Comma-separated broker list
        topic: Topic carrying weather records
        storage_group_id: Consumer group that owns persistence
        monitor_group_id: Read-only observability group
        dead_letter_topic: Destination for undecodable messages (None = off)
        consumer_concurrency: Worker threads in the storage group
        producer_progress_interval: Log checkpoint every N published records
        sink_log_interval: Log latest stored record every N inserts
        sink_status_interval: Query and log DB totals every N inserts
    """

    kafka_bootstrap_servers: str = "localhost:9092"
    topic: str = Field(DEFAULT_TOPIC, min_length=1)
    storage_group_id: str = Field(DEFAULT_STORAGE_GROUP, min_length=1)
    monitor_group_id: str = Field(DEFAULT_MONITOR_GROUP, min_length=1)
    dead_letter_topic: str | None = None

    consumer_concurrency: int = Field(3, ge=1)
    consumer_poll_timeout_ms: int = Field(1000, ge=1)
    consumer_max_poll_records: int = Field(500, ge=1)
    consumer_retry_backoff_seconds: float = Field(1.0, ge=0.0)

    producer_progress_interval: int = Field(10_000, ge=1)
    sink_log_interval: int = Field(1_000, ge=1)
    sink_status_interval: int = Field(10_000, ge=1)

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "weatherdb"
    db_user: str = "weather"
    db_password: str | None = None
    db_pool_min_size: int = Field(2, ge=1)
    db_pool_max_size: int = Field(10, ge=1)

    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    metrics_port: int | None = None

    @field_validator("dead_letter_topic")
    @classmethod
    def blank_means_disabled(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("db_pool_max_size")
    @classmethod
    def check_pool_bounds(cls, v, info):
        min_size = info.data.get("db_pool_min_size")
        if min_size is not None and v < min_size:
            raise ValueError("db_pool_max_size must be >= db_pool_min_size")
        return v

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides) -> "PipelineSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)
            **overrides: Explicit values that win over the environment

        Returns:
            Validated PipelineSettings
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, (env_var, convert) in _ENV_VARS.items():
            raw = environ.get(env_var)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path, environ: dict[str, str] | None = None) -> "PipelineSettings":
        """
        Environment settings overlaid with a YAML mapping of field names.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the YAML is not a mapping or names unknown keys
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")

        unknown = sorted(set(config) - set(cls.model_fields))
        if unknown:
            raise ValueError(f"Unknown configuration keys in {path}: {', '.join(unknown)}")

        return cls.from_env(environ, **config)

    def db_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for DatabaseConnectionPool."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "database": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "min_size": self.db_pool_min_size,
            "max_size": self.db_pool_max_size,
        }

    def bootstrap_servers(self) -> list[str]:
        return [s.strip() for s in self.kafka_bootstrap_servers.split(",") if s.strip()]
