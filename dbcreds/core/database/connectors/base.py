from __future__ import annotations

"""
Base connector interface for the credential plugin.

Every backend implements the same small surface: connect, disconnect,
execute one textual statement, and ping. Backends may additionally offer
native password rotation and account expiry.
"""

import abc
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Tuple

from dbcreds.core.connection_config import ConnectionConfig
from dbcreds.utils.exceptions import BackendConnectionError, InvalidRequestError


class BaseDatabaseConnector(abc.ABC):
    """Base class for all backend connectors."""

    type_name: ClassVar[str] = "base"
    max_username_length: ClassVar[int] = 63
    split_statements: ClassVar[bool] = True
    default_rotation_statements: ClassVar[Tuple[str, ...]] = ()
    default_deletion_statements: ClassVar[Tuple[str, ...]] = ()
    supports_expiration: ClassVar[bool] = False

    def __init__(self, config: ConnectionConfig, logger: Any = None) -> None:
        """Initialize the connector.

        Args:
            config: The normalized connection configuration
            logger: Logger instance
        """
        self._config = config
        self._logger = logger if logger else logging.getLogger(__name__)
        self._connected = False
        self._connect_lock = asyncio.Lock()
        self._last_error: Optional[str] = None
        self._last_connect_time: Optional[float] = None

    @property
    def config(self) -> ConnectionConfig:
        """Get the connection configuration.

        Returns:
            ConnectionConfig: The connection configuration
        """
        return self._config

    @property
    def is_connected(self) -> bool:
        """Check if the connector holds an open handle.

        Returns:
            bool: True if connected
        """
        return self._connected

    async def connect(self) -> None:
        """Open the backend handle.

        Opening a handle does not prove the backend is reachable; call
        :meth:`ping` for that.

        Raises:
            BackendConnectionError: If the handle cannot be created
        """
        async with self._connect_lock:
            if self._connected:
                return
            started = time.time()
            try:
                await self._open()
            except BackendConnectionError:
                raise
            except Exception as e:
                sanitized = self._sanitize_error_message(str(e))
                self._last_error = sanitized
                raise BackendConnectionError(
                    f"Failed to connect to {self.type_name}: {sanitized}",
                    address=self._config.address
                ) from e
            self._connected = True
            self._last_connect_time = time.time() - started
            self._logger.debug(
                f"Opened {self.type_name} connection",
                extra={"address": self._config.address}
            )

    async def disconnect(self) -> None:
        """Release the backend handle. Safe to call when not connected."""
        async with self._connect_lock:
            if not self._connected:
                return
            try:
                await self._close()
            finally:
                self._connected = False
                self._logger.debug(
                    f"Closed {self.type_name} connection",
                    extra={"address": self._config.address}
                )

    @abc.abstractmethod
    async def _open(self) -> None:
        """Create the underlying client or engine."""
        pass

    @abc.abstractmethod
    async def _close(self) -> None:
        """Dispose of the underlying client or engine."""
        pass

    @abc.abstractmethod
    async def execute(self, statement: str) -> None:
        """Execute one rendered statement.

        Args:
            statement: The statement text

        Raises:
            StatementError: If the backend rejects the statement
            NotFoundError: If the statement targets a user that does not exist
            BackendConnectionError: If the backend cannot be reached
        """
        pass

    @abc.abstractmethod
    async def ping(self) -> None:
        """Check the backend is reachable and the admin credentials work.

        Raises:
            BackendConnectionError: If the check fails
        """
        pass

    async def rotate_password(self, username: str, password: str) -> None:
        """Change a password without a statement template.

        Only used for backends without ``default_rotation_statements``.

        Raises:
            InvalidRequestError: If the backend has neither rotation
                statements nor native rotation
        """
        raise InvalidRequestError(
            f"{self.type_name} has no password rotation statements; supply them with the request"
        )

    async def set_expiration(self, username: str, expiration: datetime) -> None:
        """Apply an account expiry natively.

        Only called when ``supports_expiration`` is true.

        Raises:
            InvalidRequestError: If the backend has no native account expiry
        """
        raise InvalidRequestError(f"{self.type_name} has no native account expiration")

    def get_connection_info(self) -> Dict[str, Any]:
        """Get connection information without secrets.

        Returns:
            Dict[str, Any]: Connection information
        """
        return {
            "type": self.type_name,
            "host": self._config.host,
            "port": self._config.port,
            "username": self._config.username,
            "connected": self._connected,
            "last_error": self._last_error,
            "connect_time_ms": int(self._last_connect_time * 1000) if self._last_connect_time else None,
        }

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise BackendConnectionError(
                f"{self.type_name} connection is not open",
                address=self._config.address
            )

    def _sanitize_error_message(self, error_message: str) -> str:
        """Sanitize an error message to remove the admin password.

        Args:
            error_message: The original error message

        Returns:
            str: Sanitized error message
        """
        if self._config.password:
            error_message = error_message.replace(self._config.password, '[REDACTED]')
        return error_message
