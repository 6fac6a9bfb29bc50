"""
Streaming ingestion pipeline for historical weather observations.

CSV file -> Kafka topic (keyed by city) -> PostgreSQL ``weather_data`` table.
"""

__version__ = "0.1.0"
