from __future__ import annotations

"""
InfluxDB connector for the credential plugin.

Talks to InfluxDB 1.x over its HTTP API: ``GET /ping`` for liveness and
``POST /query`` for InfluxQL user management statements, authenticated with
HTTP basic auth using the admin credentials from the connection config.
"""

import ssl
from typing import Any, Dict, Optional, Union

import httpx

from dbcreds.core.connection_config import ConnectionConfig, coerce_bool, coerce_duration
from dbcreds.utils.exceptions import BackendConnectionError, InvalidConfigError, NotFoundError, StatementError
from .base import BaseDatabaseConnector

DEFAULT_CONNECT_TIMEOUT = 5.0
_MISSING_USER_MESSAGES = ("user not found",)
_AUTH_STATUS_CODES = (401, 403)


class InfluxDBConnector(BaseDatabaseConnector):
    """Connector for InfluxDB 1.x."""

    type_name = "influxdb"
    max_username_length = 100
    split_statements = True
    default_rotation_statements = ('SET PASSWORD FOR "{{username}}" = \'{{password}}\'',)
    default_deletion_statements = ('DROP USER "{{username}}"',)

    def __init__(
            self,
            config: ConnectionConfig,
            logger: Any = None,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """Initialize the InfluxDB connector.

        Args:
            config: The normalized connection configuration
            logger: Logger instance
            transport: Optional httpx transport, used by tests
        """
        super().__init__(config, logger)
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._tls = coerce_bool(config.get("tls"), "tls")
        self._insecure_tls = coerce_bool(config.get("insecure_tls"), "insecure_tls")
        self._connect_timeout = coerce_duration(
            config.get("connect_timeout"), "connect_timeout", DEFAULT_CONNECT_TIMEOUT
        )
        self._verify_setting = self._verify()

    @property
    def base_url(self) -> str:
        scheme = "https" if self._tls else "http"
        host = f"[{self._config.host}]" if ":" in self._config.host else self._config.host
        return f"{scheme}://{host}:{self._config.port}"

    def _verify(self) -> Union[bool, ssl.SSLContext]:
        if not self._tls:
            return True
        if self._insecure_tls:
            return False
        pem_bundle = self._config.get("pem_bundle")
        if pem_bundle:
            try:
                return ssl.create_default_context(cadata=pem_bundle)
            except (ssl.SSLError, ValueError) as e:
                raise InvalidConfigError(
                    f"pem_bundle is not a valid PEM certificate bundle: {e}",
                    config_key="pem_bundle"
                ) from e
        return True

    async def _open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self._config.username, self._config.password),
            timeout=self._connect_timeout,
            verify=self._verify_setting,
            transport=self._transport,
        )

    async def _close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> None:
        """Ping the server, then prove the admin credentials with ``SHOW USERS``.

        Raises:
            BackendConnectionError: If the server is down or rejects the credentials
        """
        self._ensure_connected()
        response = await self._request("GET", "/ping")
        if response.status_code != 204:
            raise BackendConnectionError(
                f"InfluxDB ping returned HTTP {response.status_code}",
                address=self._config.address,
                status_code=response.status_code
            )
        try:
            await self._query("SHOW USERS")
        except StatementError as e:
            raise BackendConnectionError(
                f"InfluxDB rejected the admin credentials: {e.message}",
                address=self._config.address
            ) from e

    async def execute(self, statement: str) -> None:
        """Execute one InfluxQL statement.

        Args:
            statement: The statement text
        """
        self._ensure_connected()
        await self._query(statement)

    async def _query(self, statement: str) -> Dict[str, Any]:
        response = await self._request("POST", "/query", data={"q": statement})
        payload = self._decode(response)

        if response.status_code in _AUTH_STATUS_CODES:
            raise BackendConnectionError(
                f"InfluxDB authorization failed: {payload.get('error', response.reason_phrase)}",
                address=self._config.address,
                status_code=response.status_code
            )
        if response.status_code >= 500:
            raise BackendConnectionError(
                f"InfluxDB returned HTTP {response.status_code}: {payload.get('error', response.reason_phrase)}",
                address=self._config.address,
                status_code=response.status_code
            )

        error = payload.get("error")
        if error is None:
            for result in payload.get("results", []) or []:
                if isinstance(result, dict) and result.get("error"):
                    error = result["error"]
                    break
        if error is None and response.status_code >= 400:
            error = response.reason_phrase or f"HTTP {response.status_code}"

        if error is not None:
            message = self._sanitize_error_message(str(error))
            if any(marker in message.lower() for marker in _MISSING_USER_MESSAGES):
                raise NotFoundError(f"InfluxDB: {message}", status_code=response.status_code)
            raise StatementError(f"InfluxDB: {message}", status_code=response.status_code)
        return payload

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            sanitized = self._sanitize_error_message(str(e)) or type(e).__name__
            self._last_error = sanitized
            self._logger.warning(
                f"InfluxDB request failed: {sanitized}",
                extra={"address": self._config.address, "path": path}
            )
            raise BackendConnectionError(
                f"Could not reach InfluxDB at {self._config.address}: {sanitized}",
                address=self._config.address
            ) from e

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {"error": response.text.strip()} if response.status_code >= 400 else {}
        return payload if isinstance(payload, dict) else {}
