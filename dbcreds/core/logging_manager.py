from __future__ import annotations

import logging
import logging.handlers
import os
import pathlib
import re
import sys
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

import structlog
from pythonjsonlogger import jsonlogger

from dbcreds.core.base import DBCredsManager
from dbcreds.utils.exceptions import ManagerInitializationError, ManagerShutdownError

REDACTED = "[REDACTED]"

_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}
_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([KMG]?B)\s*$", re.IGNORECASE)
_SENSITIVE_FIELD = re.compile(r"password|secret|token", re.IGNORECASE)


class SecretRedactingFilter(logging.Filter):
    """Scrubs credentials from log records before any handler formats them.

    Extra fields whose name looks sensitive are replaced outright. Registered
    secret values are replaced wherever they appear in the message.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()

    def add_secrets(self, values: Iterable[str]) -> None:
        self._secrets.update(value for value in values if value)

    def remove_secrets(self, values: Iterable[str]) -> None:
        self._secrets.difference_update(values)

    @property
    def secret_count(self) -> int:
        return len(self._secrets)

    def filter(self, record: logging.LogRecord) -> bool:
        for field in list(vars(record)):
            if _SENSITIVE_FIELD.search(field) and isinstance(getattr(record, field), str):
                setattr(record, field, REDACTED)

        if self._secrets and isinstance(record.msg, str):
            message = record.getMessage()
            for secret in self._secrets:
                message = message.replace(secret, REDACTED)
            record.msg = message
            record.args = None
        return True


class LoggingManager(DBCredsManager):
    """Owns the handlers of the ``dbcreds`` logger tree.

    Builds console and rotating file handlers from the ``logging`` config
    section with either a text or a JSON formatter, and keeps every handler
    behind a :class:`SecretRedactingFilter`.
    """

    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __init__(self, config_manager: Any, root_logger_name: str = "dbcreds") -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: Source of the ``logging`` config section.
            root_logger_name: Logger whose handlers this manager owns.
        """
        super().__init__(name="logging_manager")
        self._config_manager = config_manager
        self._root_logger_name = root_logger_name
        self._root_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None
        self._log_directory: Optional[pathlib.Path] = None
        self._enable_structlog = False
        self._handlers: List[logging.Handler] = []
        self._redactor = SecretRedactingFilter()

    async def initialize(self) -> None:
        """Install handlers on the root logger of the tree.

        Raises:
            ManagerInitializationError: If the config cannot be read or a handler cannot be built.
        """
        try:
            settings = await self._config_manager.get("logging", {})
            level = self._level(settings.get("level", "INFO"))

            self._root_logger = logging.getLogger(self._root_logger_name)
            self._root_logger.setLevel(level)
            for stale in list(self._root_logger.handlers):
                self._root_logger.removeHandler(stale)

            self._enable_structlog = str(settings.get("format", "json")).lower() == "json"
            if self._enable_structlog:
                formatter: logging.Formatter = jsonlogger.JsonFormatter(
                    fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
                    datefmt="%Y-%m-%dT%H:%M:%S%z",
                    json_ensure_ascii=False,
                )
            else:
                formatter = logging.Formatter(self.TEXT_FORMAT)

            console_settings = settings.get("console", {})
            if console_settings.get("enabled", True):
                self._console_handler = self._attach(
                    logging.StreamHandler(sys.stdout),
                    self._level(console_settings.get("level", "INFO")),
                    formatter,
                )

            file_settings = settings.get("file", {})
            if file_settings.get("enabled", False):
                self._file_handler = self._attach(
                    self._rotating_file_handler(file_settings),
                    level,
                    formatter,
                )

            if self._enable_structlog:
                self._configure_structlog()

            await self._config_manager.register_listener("logging", self._on_config_changed)

            self._root_logger.debug(
                "Logging configured",
                extra={"format": "json" if self._enable_structlog else "text", "handlers": len(self._handlers)},
            )
            self._initialized = True
            self._healthy = True

        except Exception as e:
            raise ManagerInitializationError(
                f"Failed to initialize LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def _attach(self, handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
        assert self._root_logger is not None
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(self._redactor)
        self._root_logger.addHandler(handler)
        self._handlers.append(handler)
        return handler

    def _rotating_file_handler(self, file_settings: Mapping[str, Any]) -> logging.Handler:
        path = pathlib.Path(file_settings.get("path", "logs/dbcreds.log"))
        self._log_directory = path.parent
        os.makedirs(self._log_directory, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=self.parse_size(file_settings.get("rotation", "10 MB")),
            backupCount=self.parse_retention(file_settings.get("retention", "30 days")),
            encoding="utf-8",
        )

    def _level(self, value: Any) -> int:
        return self.LOG_LEVELS.get(str(value).lower(), logging.INFO)

    @staticmethod
    def parse_size(rotation: Any) -> int:
        """Convert ``"10 MB"`` style sizes to bytes, defaulting to 10 MB."""
        if isinstance(rotation, int) and not isinstance(rotation, bool):
            return rotation
        match = _SIZE_PATTERN.match(str(rotation))
        if not match:
            return 10 * _SIZE_UNITS["MB"]
        return int(match.group(1)) * _SIZE_UNITS[match.group(2).upper()]

    @staticmethod
    def parse_retention(retention: Any) -> int:
        """Number of rotated files to keep for ``"30 days"`` style values."""
        if isinstance(retention, int) and not isinstance(retention, bool):
            return retention
        head = str(retention).split()
        return int(head[0]) if head and head[0].isdigit() else 30

    @staticmethod
    def _configure_structlog() -> None:
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> Union[logging.Logger, Any]:
        """Get a logger nested under the managed root logger.

        Args:
            name: Component name, e.g. ``plugin.influxdb``.

        Returns:
            A stdlib logger, or a structlog logger when JSON output is enabled.
        """
        prefix = f"{self._root_logger_name}."
        qualified = name if name.startswith(prefix) else prefix + name
        if self._initialized and self._enable_structlog:
            return structlog.get_logger(qualified)
        return logging.getLogger(qualified)

    def register_secrets(self, secret_values: Mapping[str, str]) -> None:
        """Redact these values from every record handled from now on.

        Args:
            secret_values: Mapping of secret value to its placeholder, as
                returned by ``DatabasePlugin.secret_values()``.
        """
        self._redactor.add_secrets(secret_values.keys())

    def unregister_secrets(self, secret_values: Mapping[str, str]) -> None:
        self._redactor.remove_secrets(secret_values.keys())

    async def _on_config_changed(self, key: str, value: Any) -> None:
        if not key.startswith("logging.") or self._root_logger is None:
            return

        setting = key.split(".", 1)[1]
        if setting == "level":
            self._root_logger.setLevel(self._level(value))
            if self._file_handler:
                self._file_handler.setLevel(self._level(value))
            return

        section, _, field = setting.partition(".")
        handler = {"console": self._console_handler, "file": self._file_handler}.get(section)
        if handler is None:
            return
        if field == "level":
            handler.setLevel(self._level(value))
        elif field == "enabled":
            self._toggle_handler(handler, bool(value))

    def _toggle_handler(self, handler: logging.Handler, enabled: bool) -> None:
        assert self._root_logger is not None
        if not enabled and handler in self._root_logger.handlers:
            self._root_logger.removeHandler(handler)
        elif enabled and handler not in self._root_logger.handlers:
            self._root_logger.addHandler(handler)

    async def shutdown(self) -> None:
        """Flush and close every handler this manager installed.

        Raises:
            ManagerShutdownError: If a handler cannot be closed.
        """
        if not self._initialized:
            return

        try:
            for handler in self._handlers:
                if self._root_logger:
                    self._root_logger.removeHandler(handler)
                handler.flush()
                handler.close()
            self._handlers.clear()

            await self._config_manager.unregister_listener("logging", self._on_config_changed)

            self._initialized = False
            self._healthy = False

        except Exception as e:
            raise ManagerShutdownError(
                f"Failed to shut down LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def status(self) -> Dict[str, Any]:
        status = super().status()
        if self._initialized and self._root_logger:
            attached = self._root_logger.handlers
            status.update(
                {
                    "log_directory": str(self._log_directory) if self._log_directory else None,
                    "handlers": {
                        "console": self._console_handler is not None and self._console_handler in attached,
                        "file": self._file_handler is not None and self._file_handler in attached,
                    },
                    "structured_logging": self._enable_structlog,
                    "redacted_secrets": self._redactor.secret_count,
                }
            )
        return status
