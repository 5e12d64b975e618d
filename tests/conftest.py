"""
Shared fixtures for the configuration manager tests.
"""

import shutil
from pathlib import Path
from typing import List

import pytest

from agentconfig.logger import logger
from agentconfig.manager import ConfigManager
from agentconfig.model import Configuration
from agentconfig.serializer import ConfigSerializer

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_yaml() -> str:
    """Full agent configuration document."""
    return (FIXTURES_DIR / "agent-config.yaml").read_text(encoding="utf-8")


@pytest.fixture
def config_path(tmp_path) -> Path:
    """Copy of the sample configuration in a temporary directory."""
    path = tmp_path / "agent-config.yaml"
    shutil.copyfile(FIXTURES_DIR / "agent-config.yaml", path)
    return path


@pytest.fixture
def serializer() -> ConfigSerializer:
    return ConfigSerializer()


@pytest.fixture
def sample_config(serializer, sample_yaml) -> Configuration:
    return serializer.loads(sample_yaml)


@pytest.fixture
def manager(config_path) -> ConfigManager:
    return ConfigManager(config_path)


@pytest.fixture
def loaded_manager(manager) -> ConfigManager:
    manager.get_configuration(force_reload=False)
    return manager


@pytest.fixture
def log_records() -> List[str]:
    """Capture every message emitted through the package logger."""
    records: List[str] = []
    handler_id = logger.add_sink(lambda message: records.append(str(message)))
    yield records
    logger.remove_sink(handler_id)
