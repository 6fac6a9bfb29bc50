"""
Schema management for the weather_data table.

Handles DDL for the table and its indexes. There is no schema evolution;
create_schema() is idempotent and safe to run on every start.
"""

from .connection import DatabaseConnectionPool

TABLE_NAME = "weather_data"

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS weather_data (
        id          BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
        timestamp   TIMESTAMP        NOT NULL,
        city        VARCHAR(50)      NOT NULL,
        temperature DOUBLE PRECISION NOT NULL,
        humidity    DOUBLE PRECISION NOT NULL,
        rainfall    DOUBLE PRECISION NOT NULL,
        wind_speed  DOUBLE PRECISION NOT NULL,
        pressure    DOUBLE PRECISION NOT NULL,
        created_at  TIMESTAMP        NOT NULL,
        processed   BOOLEAN          NOT NULL DEFAULT FALSE
    )
"""

CREATE_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_city ON weather_data (city)",
    "CREATE INDEX IF NOT EXISTS idx_timestamp ON weather_data (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_city_timestamp ON weather_data (city, timestamp)",
)

EXPECTED_INDEXES = ("idx_city", "idx_timestamp", "idx_city_timestamp")


class SchemaManager:
    """
    Creates and inspects the weather_data schema.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_schema(self) -> None:
        """Create weather_data and its indexes in one transaction."""
        with self.pool.transaction() as cur:
            cur.execute(CREATE_TABLE_SQL)
            for statement in CREATE_INDEXES_SQL:
                cur.execute(statement)

    def table_exists(self) -> bool:
        result = self.pool.execute_query(
            "SELECT to_regclass(%s) IS NOT NULL AS present",
            (TABLE_NAME,)
        )
        return bool(result and result[0]["present"])

    def list_indexes(self) -> list[str]:
        """
        Names of indexes defined on weather_data.

        Returns:
            Index names sorted alphabetically
        """
        rows = self.pool.execute_query(
            "SELECT indexname FROM pg_indexes WHERE tablename = %s ORDER BY indexname",
            (TABLE_NAME,)
        )
        return [row["indexname"] for row in rows]
