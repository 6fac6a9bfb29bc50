"""
Data access for the weather_data table.

Inserts are plain INSERTs (no upsert): a redelivered message yields a
second row with a new id. Nothing here writes processed = true.
"""

from datetime import datetime
from typing import Any

import psycopg
from psycopg_pool import PoolTimeout

from weather_pipeline.core.errors import PersistenceError, TransientStorageError
from weather_pipeline.core.models import WeatherRecord, WeatherRow

from .connection import DatabaseConnectionPool

INSERT_SQL = """
    INSERT INTO weather_data (
        timestamp, city, temperature, humidity, rainfall, wind_speed, pressure,
        created_at, processed
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, FALSE)
    RETURNING id, timestamp, city, temperature, humidity, rainfall, wind_speed,
              pressure, created_at, processed
"""


class WeatherDataRepository:
    """
    Reads and writes weather_data rows through the connection pool.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Args:
            pool: Open database connection pool
        """
        self.pool = pool

    def insert(self, record: WeatherRecord, created_at: datetime | None = None) -> WeatherRow:
        """
        Persist one record in its own transaction.

        Args:
            record: Record to store
            created_at: Insertion time (defaults to now, local time)

        Returns:
            The stored row with its assigned id

        Raises:
            TransientStorageError: Database unreachable or pool exhausted
            PersistenceError: Any other database failure
        """
        created_at = created_at or datetime.now()
        params = (
            record.timestamp,
            record.city,
            record.temperature,
            record.humidity,
            record.rainfall,
            record.wind_speed,
            record.pressure,
            created_at,
        )
        try:
            with self.pool.transaction() as cur:
                cur.execute(INSERT_SQL, params)
                row = cur.fetchone()
        except (psycopg.OperationalError, PoolTimeout) as e:
            raise TransientStorageError(f"Database unavailable: {e}") from e
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to insert record for {record.city}: {e}") from e

        return WeatherRow.from_db_row(row)

    def count_all(self) -> int:
        result = self.pool.execute_query("SELECT COUNT(*) AS total FROM weather_data")
        return result[0]["total"]

    def count_unprocessed(self) -> int:
        result = self.pool.execute_query(
            "SELECT COUNT(*) AS total FROM weather_data WHERE processed = FALSE"
        )
        return result[0]["total"]

    def count_by_city(self, city: str) -> int:
        """Row count for one city, compared case-insensitively."""
        result = self.pool.execute_query(
            "SELECT COUNT(*) AS total FROM weather_data WHERE LOWER(city) = LOWER(%s)",
            (city,)
        )
        return result[0]["total"]

    def find_by_city(self, city: str, limit: int = 100) -> list[WeatherRow]:
        """
        Rows for one city in insertion order (ascending id).

        Args:
            city: City name, compared case-insensitively
            limit: Maximum rows to return
        """
        rows = self.pool.execute_query(
            """
            SELECT id, timestamp, city, temperature, humidity, rainfall, wind_speed,
                   pressure, created_at, processed
            FROM weather_data
            WHERE LOWER(city) = LOWER(%s)
            ORDER BY id ASC
            LIMIT %s
            """,
            (city, limit)
        )
        return [WeatherRow.from_db_row(row) for row in rows]

    def list_cities(self) -> list[str]:
        rows = self.pool.execute_query(
            "SELECT DISTINCT city FROM weather_data ORDER BY city"
        )
        return [row["city"] for row in rows]

    def summary_by_city(self) -> list[dict[str, Any]]:
        """
        Per-city aggregates computed in the database.

        Returns:
            One dict per city: city, records, avg_temperature, avg_humidity,
            total_rainfall
        """
        return self.pool.execute_query(
            """
            SELECT city,
                   COUNT(*) AS records,
                   ROUND(AVG(temperature)::numeric, 2)::float AS avg_temperature,
                   ROUND(AVG(humidity)::numeric, 2)::float AS avg_humidity,
                   ROUND(SUM(rainfall)::numeric, 2)::float AS total_rainfall
            FROM weather_data
            GROUP BY city
            ORDER BY city
            """
        )

    def delete_processed_before(self, cutoff: datetime) -> int:
        """
        Retention sweep: delete processed rows created before ``cutoff``.

        Returns:
            Number of rows deleted
        """
        return self.pool.execute_command(
            "DELETE FROM weather_data WHERE processed = TRUE AND created_at < %s",
            (cutoff,)
        )
