"""Unit tests for the Logging Manager."""

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from dbcreds.core.logging_manager import LoggingManager, SecretRedactingFilter
from dbcreds.utils.exceptions import ManagerInitializationError


@pytest.fixture
def logging_config(tmp_path: Path):
    """Create a logging configuration for testing."""
    return {
        "level": "INFO",
        "format": "text",
        "file": {
            "enabled": True,
            "path": str(tmp_path / "logs" / "test.log"),
            "rotation": "1 MB",
            "retention": "5 days",
        },
        "console": {"enabled": True, "level": "DEBUG"},
    }


@pytest.fixture
def config_manager_mock(logging_config):
    """Create a mock ConfigManager for the LoggingManager."""
    config_manager = MagicMock()
    config_manager.get = AsyncMock(return_value=logging_config)
    config_manager.register_listener = AsyncMock()
    config_manager.unregister_listener = AsyncMock()
    return config_manager


@pytest.mark.asyncio
async def test_logging_manager_initialization(config_manager_mock, tmp_path):
    """Test that the LoggingManager initializes correctly."""
    logging_manager = LoggingManager(config_manager_mock, root_logger_name="dbcreds_test_init")
    await logging_manager.initialize()

    assert logging_manager.initialized
    assert logging_manager.healthy
    assert (tmp_path / "logs").is_dir()

    status = logging_manager.status()
    assert status["handlers"] == {"console": True, "file": True}
    assert status["structured_logging"] is False
    config_manager_mock.register_listener.assert_awaited_once()

    await logging_manager.shutdown()
    assert not logging_manager.initialized
    config_manager_mock.unregister_listener.assert_awaited_once()


@pytest.mark.asyncio
async def test_logging_manager_writes_file(config_manager_mock, tmp_path):
    logging_manager = LoggingManager(config_manager_mock, root_logger_name="dbcreds_test_file")
    await logging_manager.initialize()

    logger = logging_manager.get_logger("plugin")
    assert logger.name == "dbcreds_test_file.plugin"
    logger.info("created user", extra={"username": "v_test"})

    await logging_manager.shutdown()
    assert "created user" in (tmp_path / "logs" / "test.log").read_text()


@pytest.mark.asyncio
async def test_logging_manager_json_format(config_manager_mock, logging_config):
    logging_config["format"] = "json"
    logging_config["file"]["enabled"] = False

    logging_manager = LoggingManager(config_manager_mock, root_logger_name="dbcreds_test_json")
    await logging_manager.initialize()

    assert logging_manager.status()["structured_logging"] is True
    assert logging_manager.status()["handlers"]["file"] is False
    await logging_manager.shutdown()


def test_get_logger_before_initialize():
    logging_manager = LoggingManager(MagicMock())
    logger = logging_manager.get_logger("dbcreds.harness")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "dbcreds.harness"


@pytest.mark.asyncio
async def test_logging_manager_config_changes(config_manager_mock):
    logging_manager = LoggingManager(config_manager_mock, root_logger_name="dbcreds_test_changes")
    await logging_manager.initialize()
    root = logging.getLogger("dbcreds_test_changes")

    await logging_manager._on_config_changed("logging.level", "DEBUG")
    assert root.level == logging.DEBUG

    await logging_manager._on_config_changed("logging.console.enabled", False)
    assert logging_manager.status()["handlers"]["console"] is False

    await logging_manager._on_config_changed("logging.console.enabled", True)
    assert logging_manager.status()["handlers"]["console"] is True

    await logging_manager.shutdown()


@pytest.mark.asyncio
async def test_logging_manager_initialization_failure():
    config_manager = MagicMock()
    config_manager.get = AsyncMock(side_effect=RuntimeError("config unavailable"))

    with pytest.raises(ManagerInitializationError):
        await LoggingManager(config_manager).initialize()


@pytest.mark.asyncio
async def test_logging_manager_redacts_secrets(config_manager_mock, tmp_path):
    logging_manager = LoggingManager(config_manager_mock, root_logger_name="dbcreds_test_redact")
    await logging_manager.initialize()
    logging_manager.register_secrets({"hunter2-admin": "[password]"})

    logger = logging_manager.get_logger("plugin")
    logger.warning("login as admin with %s failed", "hunter2-admin")
    logger.info("rotated", extra={"new_password": "s3cret", "username": "v_test"})

    assert logging_manager.status()["redacted_secrets"] == 1
    logging_manager.unregister_secrets({"hunter2-admin": "[password]"})
    assert logging_manager.status()["redacted_secrets"] == 0
    await logging_manager.shutdown()

    written = (tmp_path / "logs" / "test.log").read_text()
    assert "hunter2-admin" not in written
    assert "login as admin with [REDACTED] failed" in written
    assert "s3cret" not in written


def test_secret_filter_masks_sensitive_extras():
    redactor = SecretRedactingFilter()
    record = logging.LogRecord("dbcreds", logging.INFO, __file__, 1, "created %s", ("v_user",), None)
    record.password = "pw"
    record.username = "v_user"

    assert redactor.filter(record)
    assert record.password == "[REDACTED]"
    assert record.username == "v_user"
    assert record.getMessage() == "created v_user"


def test_secret_filter_unregister():
    redactor = SecretRedactingFilter()
    redactor.add_secrets(["a", "", "b"])
    assert redactor.secret_count == 2
    redactor.remove_secrets(["a"])
    assert redactor.secret_count == 1


@pytest.mark.parametrize(
    "value,expected",
    [("1 MB", 1024 * 1024), ("512KB", 512 * 1024), ("2 gb", 2 * 1024 ** 3), (4096, 4096), ("lots", 10 * 1024 * 1024)],
)
def test_parse_size(value, expected):
    assert LoggingManager.parse_size(value) == expected


def test_parse_retention():
    assert LoggingManager.parse_retention("5 days") == 5
    assert LoggingManager.parse_retention(7) == 7
    assert LoggingManager.parse_retention("forever") == 30
