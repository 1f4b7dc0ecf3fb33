"""Pytest configuration and fixtures for dbcreds tests."""

import os
import tempfile
from typing import Any, Dict, Generator

import pytest
import yaml

from fakes import FakeConnector


@pytest.fixture(autouse=True)
def reset_fake_connectors() -> Generator[None, None, None]:
    FakeConnector.instances.clear()
    yield
    FakeConnector.instances.clear()


@pytest.fixture
def root_config() -> Dict[str, Any]:
    """Connection config as a host would send it."""
    return {
        "host": "localhost",
        "port": 8086,
        "username": "influx-root",
        "password": "influx-root",
    }


@pytest.fixture
def temp_config_file() -> Generator[str, None, None]:
    """Create a temporary configuration file for testing."""
    test_config = {
        "logging": {
            "level": "DEBUG",
            "format": "text",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
        "plugin": {"missing_user_policy": "ignore", "password_min_length": 8},
        "harness": {"startup_timeout": 30.0},
    }

    with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as tmp:
        yaml.dump(test_config, tmp)
        tmp_path = tmp.name

    yield tmp_path

    try:
        os.unlink(tmp_path)
    except OSError:
        pass
