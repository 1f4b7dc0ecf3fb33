from __future__ import annotations

from typing import Any, Dict, Optional


class DBCredsError(Exception):
    """Base exception for all dbcreds errors.

    The ``category`` attribute lets a host tell operator-fixable configuration
    problems apart from transient connectivity failures and backend-state
    failures without matching on concrete classes.
    """

    category: str = "internal"

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        details = dict(kwargs.pop("details", None) or {})
        details.update({key: value for key, value in kwargs.items() if value is not None})
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    @property
    def code(self) -> str:
        """Stable error code, the class name."""
        return type(self).__name__

    @property
    def retryable(self) -> bool:
        """Whether the host may retry the operation unchanged."""
        return self.category == "connectivity"

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ManagerError(DBCredsError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(DBCredsError):
    """Exception raised for configuration-related errors."""

    category = "configuration"

    def __init__(self, message: str, *, config_key: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """A connection config field is present but cannot be coerced."""

    pass


class MissingFieldError(ConfigurationError):
    """A required connection config field is absent or empty."""

    def __init__(self, field: str, **kwargs: Any) -> None:
        super().__init__(f"{field} cannot be empty", config_key=field, **kwargs)
        self.field = field


class InvalidRequestError(DBCredsError):
    """The host sent a request that cannot be acted upon."""

    category = "request"


class PolicyViolationError(DBCredsError):
    """Username or password constraints cannot be satisfied."""

    category = "request"


class PluginError(DBCredsError):
    """Exception raised for plugin lifecycle errors."""

    category = "request"

    def __init__(self, message: str, *, plugin_name: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a PluginError.

        Args:
            message: A descriptive error message.
            plugin_name: The name of the plugin that raised the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, plugin_name=plugin_name, **kwargs)
        self.plugin_name = plugin_name


class NotInitializedError(PluginError):
    """A credential operation was attempted before a successful initialize."""

    def __init__(self, operation: str, **kwargs: Any) -> None:
        super().__init__(f"Cannot {operation}: plugin is not initialized", operation=operation, **kwargs)
        self.operation = operation


class BackendConnectionError(DBCredsError):
    """Handshake, ping or transport failure talking to the backend."""

    category = "connectivity"


class StatementError(DBCredsError):
    """A rendered statement failed to execute on the backend."""

    category = "backend"

    def __init__(self, message: str, *, statement: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a StatementError.

        Args:
            message: A descriptive error message.
            statement: The (redacted) statement that failed.
            **kwargs: Additional error information.
        """
        super().__init__(message, statement=statement, **kwargs)
        self.statement = statement


class NotFoundError(StatementError):
    """The target user does not exist on the backend."""

    def __init__(self, message: str, *, username: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, username=username, **kwargs)
        self.username = username


class OperationCancelledError(DBCredsError):
    """The caller's deadline expired or its cancel event fired."""

    category = "cancelled"

    def __init__(self, operation: str, reason: str = "cancelled", **kwargs: Any) -> None:
        super().__init__(f"{operation} {reason}", operation=operation, reason=reason, **kwargs)
        self.operation = operation
        self.reason = reason


class ServiceStartError(DBCredsError):
    """The ephemeral test service could not be provisioned or never became ready."""

    category = "connectivity"
