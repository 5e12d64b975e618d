"""
Configuration store for the monitoring agent.

This package provides:
- A typed configuration tree (metric sets, resource type sets, managed servers, toggles)
- Validation collecting every rule violation in a tree
- YAML serialization that keeps field presence and section order
- A manager serving deep-copied snapshots and committing updates and overlays
- Optional hot reloading of the configuration file
"""

from agentconfig.exceptions import (
    AgentConfigError,
    ConfigFormatError,
    ConfigNotFoundError,
    ConfigNotWritableError,
    ConfigValidationError,
    InvalidArgumentError,
)
from agentconfig.locks import ReadWriteLock
from agentconfig.manager import ConfigManager
from agentconfig.model import OVERLAY_SECTIONS, Configuration
from agentconfig.serializer import ConfigSerializer
from agentconfig.settings import ManagerSettings, create_manager, load_settings
from agentconfig.validation import ConfigValidator

__all__ = [
    "AgentConfigError",
    "ConfigFormatError",
    "ConfigNotFoundError",
    "ConfigNotWritableError",
    "ConfigValidationError",
    "InvalidArgumentError",
    "ReadWriteLock",
    "ConfigManager",
    "OVERLAY_SECTIONS",
    "Configuration",
    "ConfigSerializer",
    "ManagerSettings",
    "create_manager",
    "load_settings",
    "ConfigValidator",
]
