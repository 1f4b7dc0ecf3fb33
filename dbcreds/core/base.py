from __future__ import annotations

import abc
import logging
from typing import Any, Dict, Optional


class DBCredsManager(abc.ABC):
    """Base class for the long-lived components of dbcreds.

    Subclasses provide their own ``initialize`` coroutine since the plugin
    lifecycle takes a request while the configuration and logging managers
    take nothing.
    """

    def __init__(self, name: str) -> None:
        """Initialize the manager with a name.

        Args:
            name: The name of the manager
        """
        self._name: str = name
        self._initialized: bool = False
        self._healthy: bool = False
        self._logger: Optional[Any] = None

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release everything acquired during initialization.

        Raises:
            ManagerShutdownError: If shutdown fails
        """
        pass

    def status(self) -> Dict[str, Any]:
        """Get the current status of the manager.

        Returns:
            Dictionary containing status information
        """
        return {
            'name': self._name,
            'initialized': self._initialized,
            'healthy': self._healthy
        }

    @property
    def name(self) -> str:
        """Get the manager's name."""
        return self._name

    @property
    def initialized(self) -> bool:
        """Check if the manager is initialized."""
        return self._initialized

    @property
    def healthy(self) -> bool:
        """Check if the manager is healthy."""
        return self._healthy

    def set_logger(self, logger: Any) -> None:
        """Set the logger for this manager.

        Args:
            logger: Logger instance to use
        """
        self._logger = logger

    @property
    def logger(self) -> Any:
        """Configured logger, or the module logger if none was set."""
        if self._logger is None:
            self._logger = logging.getLogger(f"dbcreds.{self._name}")
        return self._logger
