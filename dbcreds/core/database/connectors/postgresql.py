from __future__ import annotations

"""
PostgreSQL connector for the credential plugin.

Uses a SQLAlchemy async engine on the asyncpg driver. Statement text is sent
verbatim over the simple query protocol of a pooled asyncpg connection, so
multi-statement templates (including ``DO $$ ... $$`` blocks) are not split.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from asyncpg import exceptions as pg_errors
from sqlalchemy import URL, text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from dbcreds.core.connection_config import ConnectionConfig, coerce_bool, coerce_duration, coerce_positive_int
from dbcreds.utils.exceptions import BackendConnectionError, NotFoundError, StatementError
from .base import BaseDatabaseConnector

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_POOL_SIZE = 4
# SQLSTATE 42704 undefined_object is raised for missing roles.
_MISSING_ROLE_SQLSTATE = "42704"


def quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PostgreSQLConnector(BaseDatabaseConnector):
    """Connector for PostgreSQL."""

    type_name = "postgresql"
    max_username_length = 63
    split_statements = False
    default_rotation_statements = ('ALTER ROLE "{{username}}" WITH PASSWORD \'{{password}}\';',)
    default_deletion_statements = ('DROP ROLE "{{username}}";',)
    supports_expiration = True

    def __init__(self, config: ConnectionConfig, logger: Any = None) -> None:
        """Initialize the PostgreSQL connector.

        Args:
            config: The normalized connection configuration
            logger: Logger instance
        """
        super().__init__(config, logger)
        self._engine: Optional[AsyncEngine] = None
        self._database = config.get("database") or "postgres"
        self._ssl = coerce_bool(config.get("tls"), "tls")
        self._connect_timeout = coerce_duration(
            config.get("connect_timeout"), "connect_timeout", DEFAULT_CONNECT_TIMEOUT
        )
        self._pool_size = coerce_positive_int(
            config.get("max_open_connections"), "max_open_connections", DEFAULT_POOL_SIZE
        )

    def _url(self) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=self._config.username,
            password=self._config.password,
            host=self._config.host,
            port=self._config.port,
            database=self._database,
        )

    async def _open(self) -> None:
        connect_args: dict[str, Any] = {"timeout": self._connect_timeout}
        if self._ssl:
            connect_args["ssl"] = True
        self._engine = create_async_engine(
            self._url(),
            pool_size=self._pool_size,
            max_overflow=0,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    async def _close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def ping(self) -> None:
        """Run ``SELECT 1`` with the admin credentials.

        Raises:
            BackendConnectionError: If the query cannot be run
        """
        self._ensure_connected()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            sanitized = self._sanitize_error_message(str(e))
            self._last_error = sanitized
            raise BackendConnectionError(
                f"PostgreSQL ping failed: {sanitized}",
                address=self._config.address
            ) from e

    async def execute(self, statement: str) -> None:
        """Execute statement text with the simple query protocol.

        The text may hold several statements; PostgreSQL runs them in one
        implicit transaction.

        Args:
            statement: The statement text
        """
        self._ensure_connected()
        try:
            async with self._engine.connect() as conn:
                raw = await conn.get_raw_connection()
                await raw.driver_connection.execute(statement)
        except (
                OperationalError,
                InterfaceError,
                OSError,
                pg_errors.PostgresConnectionError,
                pg_errors.InterfaceError
        ) as e:
            sanitized = self._sanitize_error_message(str(e))
            self._last_error = sanitized
            raise BackendConnectionError(
                f"Lost connection to PostgreSQL: {sanitized}",
                address=self._config.address
            ) from e
        except (pg_errors.PostgresError, DBAPIError) as e:
            orig = e.orig if isinstance(e, DBAPIError) and e.orig is not None else e
            sanitized = self._sanitize_error_message(str(orig))
            if self._sqlstate(orig) == _MISSING_ROLE_SQLSTATE:
                raise NotFoundError(f"PostgreSQL: {sanitized}") from e
            raise StatementError(f"PostgreSQL: {sanitized}") from e

    async def set_expiration(self, username: str, expiration: datetime) -> None:
        """Set ``VALID UNTIL`` on the role."""
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        await self.execute(
            f"ALTER ROLE {quote_identifier(username)} VALID UNTIL {quote_literal(expiration.isoformat())};"
        )

    @staticmethod
    def _sqlstate(error: BaseException) -> Optional[str]:
        for attr in ("sqlstate", "pgcode"):
            value = getattr(error, attr, None)
            if value:
                return str(value)
        return None
