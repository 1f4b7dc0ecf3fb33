from __future__ import annotations

"""
Runtime configuration for the credential plugin and its test harness.

Values are layered: schema defaults, then a YAML or JSON file, then
``DBCREDS_*`` environment variables. The merged result is validated with
:class:`ConfigSchema` and handed out by dot path.
"""

import json
import os
import pathlib
import tempfile
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

import aiofiles
import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from dbcreds.core.base import DBCredsManager
from dbcreds.utils.exceptions import ConfigurationError, ManagerInitializationError

MISSING_USER_POLICIES = ('strict', 'ignore')

Listener = Callable[[str, Any], Awaitable[None]]

_YAML_SUFFIXES = ('.yaml', '.yml')


class ConfigSchema(BaseModel):
    """Shape and defaults of the runtime configuration.

    Sections stay plain dicts so that file and environment layers can add
    keys a connector or the harness reads without a schema change.
    """
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'json',
            'file': {
                'enabled': False,
                'path': 'logs/dbcreds.log',
                'rotation': '10 MB',
                'retention': '30 days',
            },
            'console': {'enabled': True, 'level': 'INFO'},
        },
        description='Handlers and formats for the dbcreds logger tree',
    )
    plugin: Dict[str, Any] = Field(
        default_factory=lambda: {
            'missing_user_policy': 'strict',
            'password_min_length': 1,
            'username': {
                'prefix': 'v',
                'display_name_length': 15,
                'role_name_length': 15,
                'random_length': 20,
                'separator': '_',
                'lowercase': False,
            },
        },
        description='Credential plugin settings',
    )
    harness: Dict[str, Any] = Field(
        default_factory=lambda: {
            'docker_binary': 'docker',
            'startup_timeout': 60.0,
            'poll_interval': 0.5,
        },
        description='Ephemeral test service settings',
    )

    @model_validator(mode='after')
    def validate_plugin(self) -> 'ConfigSchema':
        policy = self.plugin.get('missing_user_policy', 'strict')
        if policy not in MISSING_USER_POLICIES:
            raise ValueError(
                f"plugin.missing_user_policy must be one of {', '.join(MISSING_USER_POLICIES)}, got {policy!r}"
            )
        min_length = self.plugin.get('password_min_length', 1)
        if isinstance(min_length, bool) or not isinstance(min_length, int) or min_length < 1:
            raise ValueError('plugin.password_min_length must be a positive integer.')
        return self

    @model_validator(mode='after')
    def validate_harness(self) -> 'ConfigSchema':
        for key in ('startup_timeout', 'poll_interval'):
            value = self.harness.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f'harness.{key} must be a positive number.')
        return self


def deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> None:
    """Merge ``overlay`` into ``base`` in place.

    Nested mappings merge key by key. ``None``, empty strings and empty
    mappings in the overlay leave the base value alone.
    """
    for key, value in overlay.items():
        if isinstance(base.get(key), dict) and isinstance(value, Mapping):
            deep_merge(base[key], value)
        elif value is not None and value != '' and value != {}:
            base[key] = value


def set_path(config: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    """Set ``value`` at ``path``, creating intermediate dicts."""
    if not path:
        return
    node = config
    for part in path[:-1]:
        if not isinstance(node.get(part), dict):
            node[part] = {}
        node = node[part]
    node[path[-1]] = value


def parse_env_value(value: str) -> Any:
    """Read an environment string as a YAML scalar.

    ``"12"`` becomes 12, ``"true"`` becomes True and ``"0.25"`` becomes 0.25.
    Anything that is not a scalar is kept as the original string.
    """
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (bool, int, float, str)):
        return parsed
    return value


def _validation_summary(error: ValidationError) -> str:
    return ', '.join(
        f"{'.'.join(str(loc) for loc in item['loc'])}: {item['msg']}" for item in error.errors()
    )


class ConfigManager(DBCredsManager):
    """Asynchronous configuration manager.

    Environment overrides use a double underscore between path segments,
    e.g. ``DBCREDS_PLUGIN__MISSING_USER_POLICY=ignore``. Listeners are keyed
    by path prefix: a listener on ``plugin`` hears ``plugin.username.prefix``.
    """

    ENV_SEPARATOR = '__'

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'DBCREDS_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: YAML or JSON file, ``dbcreds.yaml`` by default
            env_prefix: Prefix for environment overrides
        """
        super().__init__(name='config_manager')
        self._config_path = pathlib.Path(config_path or 'dbcreds.yaml')
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_overrides: Set[str] = set()
        self._listeners: Dict[str, List[Listener]] = {}

    async def initialize(self) -> None:
        """Build the layered configuration.

        Raises:
            ManagerInitializationError: If the file cannot be read or the result is invalid
        """
        try:
            config = ConfigSchema().model_dump()
            file_config = await self._read_file()
            if file_config:
                deep_merge(config, file_config)
                self._loaded_from_file = True
            self._apply_environment(config)
            self._config = self._validated(config)
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

        self._initialized = True
        self._healthy = True

    async def _read_file(self) -> Optional[Dict[str, Any]]:
        path = self._config_path
        if not path.exists():
            return None

        suffix = path.suffix.lower()
        if suffix not in _YAML_SUFFIXES and suffix != '.json':
            raise ConfigurationError(f'Unsupported config file format: {path.suffix}', config_key='config_path')

        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            content = await f.read()
        try:
            data = yaml.safe_load(content) if suffix in _YAML_SUFFIXES else json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {path}: {str(e)}',
                config_key='config_path'
            ) from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f'Config file {path} must contain a mapping', config_key='config_path')
        return data

    def _apply_environment(self, config: Dict[str, Any]) -> None:
        for name, raw in os.environ.items():
            if not name.startswith(self._env_prefix):
                continue
            path = name[len(self._env_prefix):].lower().split(self.ENV_SEPARATOR)
            set_path(config, path, parse_env_value(raw))
            self._env_overrides.add(name)

    @staticmethod
    def _validated(config: Dict[str, Any], key: Optional[str] = None) -> Dict[str, Any]:
        try:
            return ConfigSchema(**config).model_dump()
        except ValidationError as e:
            prefix = f'Invalid configuration value for {key}' if key else 'Invalid configuration'
            raise ConfigurationError(
                f'{prefix}: {_validation_summary(e)}',
                config_key=key,
                details={'validation_errors': e.errors()}
            ) from e

    def _require_initialized(self, key: str, action: str) -> None:
        if not self._initialized:
            raise ConfigurationError(f'Cannot {action} configuration before initialization', config_key=key)

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a copy of the value at a dot path.

        Args:
            key: Dot-separated path such as ``plugin.missing_user_policy``
            default: Returned when the path does not exist

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        self._require_initialized(key, 'access')
        node: Any = self._config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return deepcopy(node)

    async def set(self, key: str, value: Any) -> None:
        """Validate and store a value, notify listeners and persist the file.

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        self._require_initialized(key, 'modify')
        candidate = deepcopy(self._config)
        set_path(candidate, key.split('.'), value)
        self._config = self._validated(candidate, key)

        await self._notify_listeners(key, value)
        await self._save_to_file()

    async def _save_to_file(self) -> None:
        """Atomically rewrite the file the configuration was loaded from."""
        if not self._loaded_from_file:
            return

        path = self._config_path
        if path.suffix.lower() in _YAML_SUFFIXES:
            content = yaml.safe_dump(self._config, default_flow_style=False)
        else:
            content = json.dumps(self._config, indent=2)

        try:
            with tempfile.NamedTemporaryFile(mode='w', delete=False, dir=path.parent, suffix='.tmp') as tmp:
                tmp.write(content)
            os.replace(tmp.name, path)
        except OSError as e:
            self.logger.error(
                f'Error saving configuration to {path}: {str(e)}',
                extra={'config_path': str(path)}
            )

    async def register_listener(self, key: str, callback: Listener) -> None:
        """Call ``callback(key, value)`` after changes at or below ``key``."""
        callbacks = self._listeners.setdefault(key, [])
        if callback not in callbacks:
            callbacks.append(callback)

    async def unregister_listener(self, key: str, callback: Listener) -> None:
        callbacks = self._listeners.get(key, [])
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._listeners.pop(key, None)

    async def _notify_listeners(self, key: str, value: Any) -> None:
        # Listener failures are logged; the change itself stands.
        for prefix, callbacks in list(self._listeners.items()):
            if key != prefix and not key.startswith(f'{prefix}.'):
                continue
            for callback in list(callbacks):
                try:
                    await callback(key, value)
                except Exception as e:
                    self.logger.error(
                        f'Error in config listener for {key}: {str(e)}',
                        extra={'config_key': key}
                    )

    async def shutdown(self) -> None:
        if self._initialized:
            await self._save_to_file()
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            'config_file': str(self._config_path) if self._loaded_from_file else None,
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': len(self._env_overrides),
            'registered_listeners': sum(len(callbacks) for callbacks in self._listeners.values()),
        })
        return status
