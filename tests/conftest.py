"""
Pytest configuration and fixtures for weather pipeline tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import logging
import os
from typing import Generator

import pytest
from testcontainers.kafka import KafkaContainer
from testcontainers.postgres import PostgresContainer

from weather_pipeline.config import PipelineSettings
from weather_pipeline.observability.logger import ROOT_LOGGER_NAME
from weather_pipeline.warehouse.connection import DatabaseConnectionPool
from weather_pipeline.warehouse.schema_mgmt import SchemaManager


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# LOGGING FIXTURES
# =======================

@pytest.fixture(autouse=True)
def propagate_pipeline_logs():
    """
    Let caplog see pipeline records.

    The package root logger does not propagate to the root logger in
    production; caplog's handler lives on the root logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    previous = root.propagate
    root.propagate = True
    yield
    root.propagate = previous


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    try:
        container = PostgresContainer(
            image="postgres:16.2-alpine",
            username="test_pipeline",
            password="test_password",
            dbname="test_weatherdb"
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available for PostgreSQL container: {e}")

    try:
        # Wait for container to be ready
        container.get_connection_url()
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open pool against a freshly created, empty weather_data table

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_weatherdb",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=5,
    )
    pool.open()
    schema = SchemaManager(pool)
    schema.create_schema()
    pool.execute_command("TRUNCATE TABLE weather_data RESTART IDENTITY")

    yield pool

    pool.close()


# =======================
# KAFKA FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def kafka_container() -> Generator[KafkaContainer, None, None]:
    """
    Start Kafka container for streaming tests

    Yields:
        KafkaContainer instance
    """
    try:
        container = KafkaContainer(image="confluentinc/cp-kafka:7.6.0")
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available for Kafka container: {e}")

    try:
        # Wait for Kafka to be ready
        container.get_bootstrap_server()
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def kafka_bootstrap_servers(kafka_container) -> str:
    """
    Get Kafka bootstrap servers for a test

    Returns:
        Bootstrap servers connection string
    """
    return kafka_container.get_bootstrap_server()


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture
def write_csv(tmp_path):
    """
    Write CSV text to a temporary file

    Returns:
        Callable (text, name="weather.csv") -> Path
    """
    def _write(text: str, name: str = "weather.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture
def settings() -> PipelineSettings:
    """Settings with small milestone intervals and no external env"""
    return PipelineSettings.from_env(
        environ={},
        db_password="test_password",
        consumer_concurrency=1,
        consumer_poll_timeout_ms=50,
        consumer_retry_backoff_seconds=0.0,
        producer_progress_interval=2,
        sink_log_interval=2,
        sink_status_interval=4,
    )
