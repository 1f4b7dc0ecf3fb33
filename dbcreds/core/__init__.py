"""Core package containing the plugin lifecycle and its supporting managers."""

from dbcreds.core.base import DBCredsManager
from dbcreds.core.config_manager import ConfigManager
from dbcreds.core.connection_config import ConnectionConfig, normalize_connection_config
from dbcreds.core.logging_manager import LoggingManager
from dbcreds.core.plugin import (
    ChangeExpiration,
    ChangePassword,
    DatabasePlugin,
    DeleteUserRequest,
    DeleteUserResponse,
    InitializeRequest,
    InitializeResponse,
    NewUserRequest,
    NewUserResponse,
    PluginSettings,
    PluginState,
    UpdateUserRequest,
    UpdateUserResponse,
)
from dbcreds.core.plugin_manager import PluginManager
