"""Unit tests for the Configuration Manager."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import yaml

from dbcreds.core.config_manager import ConfigManager, ConfigSchema, deep_merge, parse_env_value, set_path
from dbcreds.utils.exceptions import ConfigurationError, ManagerInitializationError


def test_config_schema_default_values() -> None:
    """Test that ConfigSchema provides correct default values."""
    schema = ConfigSchema()

    assert schema.logging["level"] == "INFO"
    assert schema.logging["format"] == "json"
    assert schema.plugin["missing_user_policy"] == "strict"
    assert schema.plugin["password_min_length"] == 1
    assert schema.plugin["username"]["prefix"] == "v"
    assert schema.plugin["username"]["random_length"] == 20
    assert schema.harness["docker_binary"] == "docker"
    assert schema.harness["startup_timeout"] == 60.0


def test_config_schema_rejects_unknown_policy() -> None:
    with pytest.raises(ValueError, match="missing_user_policy"):
        ConfigSchema(plugin={"missing_user_policy": "sometimes"})


def test_config_schema_rejects_bad_password_length() -> None:
    with pytest.raises(ValueError, match="password_min_length"):
        ConfigSchema(plugin={"password_min_length": 0})


def test_config_schema_rejects_bad_harness_timing() -> None:
    with pytest.raises(ValueError, match="harness.startup_timeout"):
        ConfigSchema(harness={"startup_timeout": -1, "poll_interval": 0.5})


@pytest.mark.asyncio
async def test_config_manager_yaml_file(temp_config_file: str) -> None:
    """Test loading configuration from a YAML file."""
    manager = ConfigManager(config_path=temp_config_file)
    await manager.initialize()

    assert manager.initialized
    assert await manager.get("plugin.missing_user_policy") == "ignore"
    assert await manager.get("plugin.password_min_length") == 8
    # Defaults survive the merge
    assert await manager.get("plugin.username.prefix") == "v"
    assert await manager.get("harness.startup_timeout") == 30.0
    assert await manager.get("logging.format") == "text"

    await manager.shutdown()


@pytest.mark.asyncio
async def test_config_manager_json_file(tmp_path: Path) -> None:
    """Test loading configuration from a JSON file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"harness": {"docker_binary": "podman"}}))

    manager = ConfigManager(config_path=config_file)
    await manager.initialize()

    assert await manager.get("harness.docker_binary") == "podman"
    assert manager.status()["loaded_from_file"] is True


@pytest.mark.asyncio
async def test_config_manager_nonexistent_file() -> None:
    """Test initialization with a non-existent file path."""
    manager = ConfigManager(config_path="/path/that/does/not/exist.yaml")
    await manager.initialize()

    assert manager.initialized
    assert await manager.get("logging.level") == "INFO"
    assert manager.status()["config_file"] is None


@pytest.mark.asyncio
async def test_config_manager_invalid_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("plugin: [unclosed")

    manager = ConfigManager(config_path=config_file)
    with pytest.raises(ManagerInitializationError):
        await manager.initialize()


@pytest.mark.asyncio
async def test_config_manager_invalid_values(tmp_path: Path) -> None:
    config_file = tmp_path / "invalid.yaml"
    config_file.write_text(yaml.dump({"plugin": {"missing_user_policy": "never"}}))

    manager = ConfigManager(config_path=config_file)
    with pytest.raises(ManagerInitializationError):
        await manager.initialize()


@pytest.mark.asyncio
async def test_config_manager_unsupported_format(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[plugin]")

    manager = ConfigManager(config_path=config_file)
    with pytest.raises(ManagerInitializationError):
        await manager.initialize()


@pytest.mark.asyncio
async def test_config_manager_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables override file values, "__" separates path segments."""
    monkeypatch.setenv("DBCREDS_PLUGIN__MISSING_USER_POLICY", "ignore")
    monkeypatch.setenv("DBCREDS_PLUGIN__PASSWORD_MIN_LENGTH", "12")
    monkeypatch.setenv("DBCREDS_HARNESS__POLL_INTERVAL", "0.25")
    monkeypatch.setenv("DBCREDS_PLUGIN__USERNAME__LOWERCASE", "true")

    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    await manager.initialize()

    assert await manager.get("plugin.missing_user_policy") == "ignore"
    assert await manager.get("plugin.password_min_length") == 12
    assert await manager.get("harness.poll_interval") == 0.25
    assert await manager.get("plugin.username.lowercase") is True
    assert manager.status()["env_vars_applied"] == 4


@pytest.mark.asyncio
async def test_config_manager_get_before_initialize() -> None:
    manager = ConfigManager()
    with pytest.raises(ConfigurationError):
        await manager.get("logging.level")


@pytest.mark.asyncio
async def test_config_manager_get_returns_copy(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    await manager.initialize()

    plugin = await manager.get("plugin")
    plugin["missing_user_policy"] = "ignore"

    assert await manager.get("plugin.missing_user_policy") == "strict"
    assert await manager.get("plugin.nope", "fallback") == "fallback"


@pytest.mark.asyncio
async def test_config_manager_set_notifies_listeners(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    await manager.initialize()
    listener = AsyncMock()
    await manager.register_listener("plugin", listener)

    await manager.set("plugin.missing_user_policy", "ignore")

    listener.assert_awaited_once_with("plugin.missing_user_policy", "ignore")
    assert await manager.get("plugin.missing_user_policy") == "ignore"

    await manager.unregister_listener("plugin", listener)
    await manager.set("plugin.missing_user_policy", "strict")
    listener.assert_awaited_once()


@pytest.mark.asyncio
async def test_config_manager_set_validates(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    await manager.initialize()

    with pytest.raises(ConfigurationError):
        await manager.set("plugin.missing_user_policy", "sometimes")
    assert await manager.get("plugin.missing_user_policy") == "strict"


@pytest.mark.asyncio
async def test_config_manager_listener_errors_are_logged(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "absent.yaml")
    await manager.initialize()
    await manager.register_listener("logging", AsyncMock(side_effect=RuntimeError("boom")))

    await manager.set("logging.level", "DEBUG")

    assert await manager.get("logging.level") == "DEBUG"


@pytest.mark.asyncio
async def test_config_manager_set_saves_file(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({"harness": {"startup_timeout": 10.0}}))

    manager = ConfigManager(config_path=config_file)
    await manager.initialize()
    await manager.set("harness.startup_timeout", 15.0)

    saved = yaml.safe_load(config_file.read_text())
    assert saved["harness"]["startup_timeout"] == 15.0


@pytest.mark.parametrize(
    "raw,expected",
    [("12", 12), ("0.25", 0.25), ("true", True), ("no", False), ("ignore", "ignore"), ("5s", "5s"), ("[a]", "[a]"), ("", "")],
)
def test_parse_env_value(raw: str, expected: object) -> None:
    assert parse_env_value(raw) == expected


def test_deep_merge_keeps_defaults_for_empty_values() -> None:
    base = {"plugin": {"missing_user_policy": "strict", "username": {"prefix": "v"}}, "harness": {"docker_binary": "docker"}}
    deep_merge(base, {"plugin": {"username": {"prefix": "dyn"}, "missing_user_policy": None}, "harness": {}})

    assert base == {"plugin": {"missing_user_policy": "strict", "username": {"prefix": "dyn"}}, "harness": {"docker_binary": "docker"}}


def test_set_path_creates_sections() -> None:
    config = {"plugin": "not a section"}
    set_path(config, ["plugin", "username", "prefix"], "dyn")
    assert config == {"plugin": {"username": {"prefix": "dyn"}}}
