"""
Connection config normalization.

Hosts hand the plugin a loosely typed mapping: ``port`` may be an integer or
a string, the address may arrive as one ``"host:port"`` value, and backends
carry their own extra keys. This module turns that mapping into a single
canonical :class:`ConnectionConfig` so the rest of the runtime never has to
branch on the type of a value.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from dbcreds.utils.exceptions import InvalidConfigError, MissingFieldError

REQUIRED_FIELDS = ("host", "port", "username", "password")
ADDRESS_FIELD = "address"
REDACTED_PASSWORD = "[password]"

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}
_TRUE_STRINGS = ("true", "1", "yes", "on")
_FALSE_STRINGS = ("false", "0", "no", "off")


class ConnectionConfig(BaseModel):
    """Canonical connection descriptor.

    ``port`` is always an ``int`` here. Backend specific keys are kept as
    pydantic extras so they round-trip back to the host untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    host: str
    port: int
    username: str
    password: str

    @field_validator("port", mode="before")
    @classmethod
    def _coerce_port(cls, value: Any) -> int:
        return coerce_port(value)

    @property
    def extras(self) -> Dict[str, Any]:
        """Backend-specific keys, unchanged."""
        return dict(self.model_extra or {})

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a required field or an extra by name."""
        if key in REQUIRED_FIELDS:
            return getattr(self, key)
        return self.extras.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Mapping handed back to the host after initialize."""
        return self.model_dump()

    def secret_values(self) -> Dict[str, str]:
        """Map of secret value to its redacted replacement."""
        return {self.password: REDACTED_PASSWORD}


def coerce_port(value: Any) -> int:
    """Coerce an integer or decimal-digit string into a TCP port.

    Raises:
        ValueError: If the value is neither, or is out of range
    """
    if isinstance(value, bool):
        raise ValueError(f"port must be an integer, got {value!r}")
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        raise ValueError(f"port must be an integer or a string of digits, got {value!r}")
    if not 0 < port <= 65535:
        raise ValueError(f"port {port} is outside the range 1-65535")
    return port


def _split_address(address: Any) -> tuple[str, str]:
    if not isinstance(address, str) or ":" not in address:
        raise InvalidConfigError(
            f"address must be in host:port form, got {address!r}",
            config_key=ADDRESS_FIELD
        )
    host, _, port = address.rpartition(":")
    host = host.strip("[]")
    if not host or not port:
        raise InvalidConfigError(
            f"address must be in host:port form, got {address!r}",
            config_key=ADDRESS_FIELD
        )
    return host, port


def normalize_connection_config(raw: Union[Mapping[str, Any], ConnectionConfig]) -> ConnectionConfig:
    """Normalize a raw connection mapping.

    Args:
        raw: Host supplied mapping, or an already normalized config

    Returns:
        ConnectionConfig: The canonical config

    Raises:
        MissingFieldError: If host, port, username or password is absent or empty
        InvalidConfigError: If a field is present but cannot be coerced
    """
    if isinstance(raw, ConnectionConfig):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidConfigError(f"connection config must be a mapping, got {type(raw).__name__}")

    data: Dict[str, Any] = dict(raw)

    address = data.pop(ADDRESS_FIELD, None)
    if address not in (None, ""):
        host, port = _split_address(address)
        if data.get("host") in (None, ""):
            data["host"] = host
        if data.get("port") in (None, ""):
            data["port"] = port

    for field in REQUIRED_FIELDS:
        if data.get(field) in (None, ""):
            raise MissingFieldError(field)

    for field in ("host", "username", "password"):
        if not isinstance(data[field], str):
            raise InvalidConfigError(
                f"{field} must be a string, got {type(data[field]).__name__}",
                config_key=field
            )

    try:
        return ConnectionConfig(**data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(loc) for loc in error["loc"]) or None
        raise InvalidConfigError(
            f"Invalid connection config: {error['msg']}",
            config_key=field
        ) from e


def coerce_bool(value: Any, field: str, default: bool = False) -> bool:
    """Coerce a boolean-ish extra such as ``tls`` or ``insecure_tls``."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise InvalidConfigError(f"{field} must be a boolean, got {value!r}", config_key=field)


def coerce_duration(value: Any, field: str, default: Optional[float] = None) -> Optional[float]:
    """Coerce a duration extra into seconds.

    Accepts a number of seconds or a string such as ``"5s"``, ``"500ms"``,
    ``"1m"`` or ``"1h"``. A bare numeric string is read as seconds.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidConfigError(f"{field} must be a duration, got {value!r}", config_key=field)
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if not match:
            raise InvalidConfigError(f"{field} must be a duration, got {value!r}", config_key=field)
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    else:
        raise InvalidConfigError(f"{field} must be a duration, got {value!r}", config_key=field)
    if seconds <= 0:
        raise InvalidConfigError(f"{field} must be positive, got {value!r}", config_key=field)
    return seconds


def coerce_positive_int(value: Any, field: str, default: int) -> int:
    """Coerce a count extra such as ``max_open_connections``.

    Accepts an int or a decimal-digit string; zero, negatives and booleans
    are rejected.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidConfigError(f"{field} must be a positive integer, got {value!r}", config_key=field)
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        raise InvalidConfigError(f"{field} must be a positive integer, got {value!r}", config_key=field)
    if number < 1:
        raise InvalidConfigError(f"{field} must be a positive integer, got {value!r}", config_key=field)
    return number
