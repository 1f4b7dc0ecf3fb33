from __future__ import annotations

"""
Connector registry and plugin factory.

Hosts pick a backend by name; the manager resolves it to a connector class,
builds the plugin settings from the ``plugin`` config section and keeps track
of the open plugins it handed out so they can be closed on shutdown.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import ValidationError

from dbcreds.core.base import DBCredsManager
from dbcreds.core.database.connectors import BaseDatabaseConnector, InfluxDBConnector, PostgreSQLConnector
from dbcreds.core.plugin import DatabasePlugin, PluginSettings, PluginState
from dbcreds.utils.exceptions import (
    ConfigurationError,
    ManagerInitializationError,
    ManagerShutdownError,
    PluginError,
)


class PluginManager(DBCredsManager):
    """Creates :class:`DatabasePlugin` instances for registered backends."""

    def __init__(self, config_manager: Optional[Any] = None, logger_manager: Optional[Any] = None) -> None:
        """Initialize the plugin manager.

        Args:
            config_manager: The configuration manager, optional
            logger_manager: The logging manager, optional
        """
        super().__init__(name='plugin_manager')
        self._config_manager = config_manager
        self._logger_manager = logger_manager
        if logger_manager is not None:
            self.set_logger(logger_manager.get_logger('plugin_manager'))
        self._connector_registry: Dict[str, Type[BaseDatabaseConnector]] = {}
        self._settings = PluginSettings()
        self._plugins: List[DatabasePlugin] = []

    async def initialize(self) -> None:
        """Register built-in connectors and load plugin settings.

        Raises:
            ManagerInitializationError: If the settings are invalid
        """
        try:
            self._register_builtin_connectors()
            if self._config_manager is not None:
                self._settings = self._build_settings(await self._config_manager.get('plugin', {}))
                await self._config_manager.register_listener('plugin', self._on_config_changed)

            self._initialized = True
            self._healthy = True
            self.logger.info(
                'Plugin manager initialized',
                extra={'connector_types': self.registered_types()}
            )
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize PluginManager: {str(e)}',
                manager_name=self.name
            ) from e

    def _register_builtin_connectors(self) -> None:
        self.register_connector_type(InfluxDBConnector.type_name, InfluxDBConnector)
        self.register_connector_type(PostgreSQLConnector.type_name, PostgreSQLConnector)

    def register_connector_type(self, type_name: str, connector_class: Type[BaseDatabaseConnector]) -> None:
        """Register a connector class under a backend name.

        Args:
            type_name: The backend name hosts will ask for
            connector_class: The connector class to register
        """
        self._connector_registry[type_name.lower()] = connector_class
        self.logger.debug(f'Registered connector type: {type_name}')

    def registered_types(self) -> List[str]:
        return sorted(self._connector_registry)

    @property
    def settings(self) -> PluginSettings:
        return self._settings

    def create_plugin(self, type_name: str, **connector_kwargs: Any) -> DatabasePlugin:
        """Build an uninitialized plugin for a backend.

        Args:
            type_name: Registered backend name
            **connector_kwargs: Extra keyword arguments for the connector

        Returns:
            DatabasePlugin: The new plugin

        Raises:
            PluginError: If no connector is registered under ``type_name``
        """
        connector_class = self._connector_registry.get(type_name.lower())
        if connector_class is None:
            raise PluginError(
                f'No connector available for database type: {type_name}',
                plugin_name=type_name,
                details={'registered': self.registered_types()}
            )

        logger = (
            self._logger_manager.get_logger(f'plugin.{connector_class.type_name}')
            if self._logger_manager is not None
            else None
        )
        plugin = DatabasePlugin(connector_class, settings=self._settings, logger=logger, **connector_kwargs)
        self._prune_closed()
        self._plugins.append(plugin)
        return plugin

    async def release_plugin(self, plugin: DatabasePlugin) -> None:
        """Close a plugin and stop tracking it.

        Args:
            plugin: A plugin returned by :meth:`create_plugin`
        """
        try:
            await plugin.close()
        finally:
            if plugin in self._plugins:
                self._plugins.remove(plugin)

    def _prune_closed(self) -> None:
        # Plugins closed by the host are no longer ours to shut down.
        self._plugins = [plugin for plugin in self._plugins if plugin.state != PluginState.CLOSED]

    @staticmethod
    def _build_settings(section: Dict[str, Any]) -> PluginSettings:
        try:
            return PluginSettings(**(section or {}))
        except ValidationError as e:
            raise ConfigurationError(f'Invalid plugin settings: {str(e)}', config_key='plugin') from e

    async def _on_config_changed(self, key: str, value: Any) -> None:
        """Apply new plugin settings to plugins created from now on."""
        if key != 'plugin' and not key.startswith('plugin.'):
            return
        section = await self._config_manager.get('plugin', {})
        self._settings = self._build_settings(section)
        self.logger.info('Reloaded plugin settings', extra={'key': key})

    async def shutdown(self) -> None:
        """Close every plugin created by this manager.

        Raises:
            ManagerShutdownError: If a plugin fails to close
        """
        if not self._initialized:
            return

        failures: List[str] = []
        for plugin in self._plugins:
            try:
                await plugin.close()
            except Exception as e:
                self.logger.error(f'Error closing {plugin.name}: {str(e)}')
                failures.append(plugin.name)
        self._plugins.clear()

        if self._config_manager is not None:
            await self._config_manager.unregister_listener('plugin', self._on_config_changed)

        self._initialized = False
        self._healthy = False
        if failures:
            raise ManagerShutdownError(
                f'Failed to close plugins: {", ".join(failures)}',
                manager_name=self.name
            )
        self.logger.info('Plugin manager shut down')

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            'connector_types': self.registered_types(),
            'plugins': [plugin.status() for plugin in self._plugins if plugin.state != PluginState.CLOSED],
            'settings': self._settings.model_dump(),
        })
        return status
