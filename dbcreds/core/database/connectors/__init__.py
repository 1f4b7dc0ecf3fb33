"""
Backend connectors for the credential plugin.

This package provides connectors for different database types:
- InfluxDB: InfluxDB 1.x over its HTTP API
- PostgreSQL: PostgreSQL over SQLAlchemy's asyncpg dialect
"""

from dbcreds.core.database.connectors.base import BaseDatabaseConnector
from dbcreds.core.database.connectors.influxdb import InfluxDBConnector
from dbcreds.core.database.connectors.postgresql import PostgreSQLConnector

__all__ = [
    "BaseDatabaseConnector",
    "InfluxDBConnector",
    "PostgreSQLConnector",
]
