"""
PostgreSQL storage for weather observations.
"""

from .connection import DatabaseConnectionPool
from .repository import WeatherDataRepository
from .schema_mgmt import SchemaManager

__all__ = [
    "DatabaseConnectionPool",
    "WeatherDataRepository",
    "SchemaManager",
]
