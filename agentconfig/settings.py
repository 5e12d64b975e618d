"""
Settings of the configuration manager itself.

These are read from an optional TOML file and can be overridden through
``AGENTCONFIG_*`` environment variables. They describe where the agent
configuration lives and how the manager treats it; they are not part of the
agent configuration tree.
"""

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from agentconfig.exceptions import ConfigFormatError, ConfigNotFoundError
from agentconfig.locks import ReadWriteLock
from agentconfig.logger import define_log_level, logger
from agentconfig.manager import ConfigManager

ENV_PREFIX = "AGENTCONFIG_"
SETTINGS_TABLE = "agentconfig"


class LogLevel(str, Enum):
    """Supported log levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ManagerSettings(BaseModel):
    config_file: Path = Field(
        Path("agent-config.yaml"), description="Agent configuration file"
    )
    fair_lock: bool = Field(
        True, description="Queue new readers behind waiting writers"
    )
    hot_reload: bool = Field(
        False, description="Reload the configuration when the file changes"
    )
    reload_debounce_secs: float = Field(
        1.0, description="Minimum delay between two hot reloads"
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Console log level")
    log_dir: Optional[Path] = Field(None, description="Directory for log files")

    @field_validator("reload_debounce_secs")
    @classmethod
    def validate_debounce(cls, v):
        if v < 0:
            raise ValueError("reload_debounce_secs must not be negative")
        return v


def _convert_env_value(value: str) -> Union[str, bool]:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _env_overrides() -> Dict[str, Any]:
    overrides = {}
    for name in ManagerSettings.model_fields:
        env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None:
            overrides[name] = _convert_env_value(env_value)
            logger.debug(f"Applied environment override for {name}")
    return overrides


def load_settings(path: Optional[Union[str, Path]] = None) -> ManagerSettings:
    """Load settings from a TOML file (if given) and the environment.

    The file may hold the settings at its top level or under an
    ``[agentconfig]`` table. Relative ``config_file`` and ``log_dir`` values
    are resolved against the directory of the settings file.
    """
    raw: Dict[str, Any] = {}
    base_dir: Optional[Path] = None

    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigNotFoundError(f"Settings file [{path}] does not exist", path=path)
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigFormatError(f"Invalid TOML in {path}: {e}", path=path, cause=e)
        raw = dict(data.get(SETTINGS_TABLE, data))
        base_dir = path.parent

    raw.update(_env_overrides())

    try:
        settings = ManagerSettings(**raw)
    except ValidationError as e:
        raise ConfigFormatError(f"Invalid manager settings: {e}", cause=e)

    if base_dir is not None:
        if not settings.config_file.is_absolute():
            settings.config_file = base_dir / settings.config_file
        if settings.log_dir is not None and not settings.log_dir.is_absolute():
            settings.log_dir = base_dir / settings.log_dir

    return settings


def create_manager(
    settings: ManagerSettings, configure_logging: bool = True
) -> Tuple[ConfigManager, Optional["ConfigHotReloader"]]:
    """Build a manager (and its hot reloader when enabled) from settings"""
    from agentconfig.watcher import ConfigHotReloader

    if configure_logging:
        define_log_level(
            print_level=settings.log_level.value,
            log_dir=settings.log_dir,
            name="agentconfig",
        )

    manager = ConfigManager(
        settings.config_file, lock=ReadWriteLock(fair=settings.fair_lock)
    )

    reloader = None
    if settings.hot_reload:
        reloader = ConfigHotReloader(manager, debounce_secs=settings.reload_debounce_secs)

    logger.info(
        "Configuration manager created",
        {
            "config_file": str(settings.config_file),
            "hot_reload": settings.hot_reload,
            "fair_lock": settings.fair_lock,
        },
    )
    return manager, reloader
