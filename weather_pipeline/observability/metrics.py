"""
Prometheus metrics collection for the weather pipeline

Counters here mirror the in-process AtomicCounters for scraping; the
AtomicCounters remain the source of truth for consumer_stats().
"""
import os
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# INGESTION METRICS
# =======================

records_read_total = Counter(
    name="weather_records_read_total",
    documentation="CSV rows successfully parsed into records",
    registry=REGISTRY,
)

csv_parse_errors_total = Counter(
    name="weather_csv_parse_errors_total",
    documentation="CSV rows skipped because they could not be parsed",
    registry=REGISTRY,
)

records_published_total = Counter(
    name="weather_records_published_total",
    documentation="Records handed to the Kafka producer",
    labelnames=["topic"],
    registry=REGISTRY,
)

publish_failures_total = Counter(
    name="weather_publish_failures_total",
    documentation="Records whose delivery callback reported an error",
    labelnames=["topic"],
    registry=REGISTRY,
)

ingest_duration_seconds = Histogram(
    name="weather_ingest_duration_seconds",
    documentation="Wall time of complete ingestion jobs",
    buckets=[1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0],
    registry=REGISTRY,
)

ingestion_jobs_total = Counter(
    name="weather_ingestion_jobs_total",
    documentation="Ingestion jobs by terminal state",
    labelnames=["status"],  # completed, failed, cancelled
    registry=REGISTRY,
)

# =======================
# CONSUMER / SINK METRICS
# =======================

messages_consumed_total = Counter(
    name="weather_messages_consumed_total",
    documentation="Messages handled by the storage consumer",
    labelnames=["status"],  # persisted, dropped, retried
    registry=REGISTRY,
)

insert_duration_seconds = Histogram(
    name="weather_insert_duration_seconds",
    documentation="Time spent inserting one record (transaction included)",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0],
    registry=REGISTRY,
)

consumer_processed = Gauge(
    name="weather_consumer_processed",
    documentation="processedCount since last reset",
    registry=REGISTRY,
)

consumer_errors = Gauge(
    name="weather_consumer_errors",
    documentation="errorCount since last reset",
    registry=REGISTRY,
)

rows_total = Gauge(
    name="weather_rows_total",
    documentation="Rows in weather_data at the last status snapshot",
    registry=REGISTRY,
)

rows_unprocessed = Gauge(
    name="weather_rows_unprocessed",
    documentation="Rows with processed = false at the last status snapshot",
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: only bind a port when the endpoint is actually wanted
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(insert_duration_seconds):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        metric = self.histogram.labels(**self.labels) if self.labels else self.histogram
        self.timer = metric.time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    if labels:
        gauge.labels(**labels).set(value)
    else:
        gauge.set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    if labels:
        histogram.labels(**labels).observe(value)
    else:
        histogram.observe(value)


# =======================
# METRICS COLLECTOR CLASS
# =======================

class MetricsCollector:
    """
    Unified interface used by the producer, consumer and sink.
    """

    def record_parsed(self, count: int = 1) -> None:
        increment_counter(records_read_total, count)

    def record_parse_error(self) -> None:
        increment_counter(csv_parse_errors_total)

    def record_published(self, topic: str) -> None:
        increment_counter(records_published_total, topic=topic)

    def record_publish_failure(self, topic: str) -> None:
        increment_counter(publish_failures_total, topic=topic)

    def record_message(self, status: str) -> None:
        """status: persisted, dropped or retried"""
        increment_counter(messages_consumed_total, status=status)

    def record_job_finished(self, status: str, duration_seconds: float) -> None:
        increment_counter(ingestion_jobs_total, status=status)
        if duration_seconds > 0:
            observe_histogram(ingest_duration_seconds, duration_seconds)

    def record_consumer_counters(self, processed: int, errors: int) -> None:
        set_gauge(consumer_processed, processed)
        set_gauge(consumer_errors, errors)

    def record_row_counts(self, total: int, unprocessed: int) -> None:
        set_gauge(rows_total, total)
        set_gauge(rows_unprocessed, unprocessed)
