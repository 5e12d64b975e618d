"""
Validation of agent configuration trees.

The validator walks every section of a tree and asks each element for its
own rule violations. All issues are collected before anything is raised, so
a single failed load reports every offending element at once. Structural
problems (a document that is not a mapping, wrong value types, unknown keys)
never reach this module: the serializer rejects them first.
"""

from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from pydantic import BaseModel

from agentconfig.exceptions import ConfigValidationError
from agentconfig.logger import logger

if TYPE_CHECKING:
    from agentconfig.model import Configuration


class ConfigValidationSeverity(Enum):
    """Validation issue severity levels"""

    ERROR = "error"  # Rejects the configuration
    WARNING = "warning"  # Logged, configuration is accepted


class ConfigValidationIssue(BaseModel):
    """Represents a configuration validation issue"""

    location: str
    severity: ConfigValidationSeverity
    message: str
    element: Optional[str] = None  # Name of the innermost named element

    def __str__(self) -> str:
        if self.element:
            return f"{self.location} ('{self.element}'): {self.message}"
        return f"{self.location}: {self.message}"


NAMED_SECTIONS = (
    "security-realm",
    "metric-set-dmr",
    "resource-type-set-dmr",
    "metric-set-jmx",
    "resource-type-set-jmx",
)

BLOCK_SECTIONS = (
    "subsystem",
    "metrics-exporter",
    "storage-adapter",
    "managed-servers",
    "platform",
)


class ConfigValidator:
    """Collects rule violations across a whole configuration tree"""

    def __init__(self):
        self.validation_issues: List[ConfigValidationIssue] = []

    def validate(self, config: "Configuration") -> List[ConfigValidationIssue]:
        """Return every issue found in the tree, errors and warnings alike"""
        from agentconfig.model import collect_section_issues

        self.validation_issues = []

        for key in NAMED_SECTIONS:
            self.validation_issues.extend(
                collect_section_issues(config.get_section(key), key)
            )

        for key in BLOCK_SECTIONS:
            block = config.get_section(key)
            if block is not None:
                self.validation_issues.extend(block.collect_issues(key))

        self._validate_references(config)

        return self.validation_issues

    def validate_or_raise(self, config: "Configuration") -> List[ConfigValidationIssue]:
        """Validate the tree, log warnings and raise if any error was found"""
        issues = self.validate(config)
        errors = [i for i in issues if i.severity == ConfigValidationSeverity.ERROR]
        warnings = [i for i in issues if i.severity == ConfigValidationSeverity.WARNING]

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

        if errors:
            summary = "; ".join(str(error) for error in errors)
            raise ConfigValidationError(
                f"Configuration is invalid ({len(errors)} error(s)): {summary}",
                issues=errors,
            )
        return warnings

    def validate_overlay(self, overlay: "Configuration"):
        """Reject an overlay naming the same element twice within a section.

        Merging replaces elements by name, so a repeated name would silently
        drop the earlier element. Everything else is checked on the merged
        tree, where locations point at the final positions.
        """
        from agentconfig.model import OVERLAY_SECTIONS, collect_duplicate_names

        errors: List[ConfigValidationIssue] = []
        for key in OVERLAY_SECTIONS:
            errors.extend(collect_duplicate_names(overlay.get_section(key), key))

        if errors:
            summary = "; ".join(str(error) for error in errors)
            raise ConfigValidationError(
                f"Overlay is invalid ({len(errors)} error(s)): {summary}",
                issues=errors,
            )

    def _validate_references(self, config: "Configuration"):
        """Report references to names that no section defines"""
        resource_type_sets = self._names(config, "resource-type-set-dmr") | self._names(
            config, "resource-type-set-jmx"
        )
        metric_sets = self._names(config, "metric-set-dmr") | self._names(
            config, "metric-set-jmx"
        )
        realms = self._names(config, "security-realm")

        if config.managed_servers is not None:
            for server in config.managed_servers.all_servers():
                for set_name in server.resource_type_sets or []:
                    if set_name not in resource_type_sets:
                        self._warn(
                            "managed-servers",
                            f"server '{server.name}' references unknown "
                            f"resource-type-set '{set_name}'",
                        )
                realm = getattr(server, "security_realm", None)
                if realm and realm not in realms:
                    self._warn(
                        "managed-servers",
                        f"server '{server.name}' references unknown "
                        f"security-realm '{realm}'",
                    )

        for key in ("resource-type-set-dmr", "resource-type-set-jmx"):
            for index, type_set in enumerate(config.get_section(key) or []):
                for resource_type in self._resource_types(type_set):
                    for set_name in resource_type.metric_sets or []:
                        if set_name not in metric_sets:
                            self._warn(
                                f"{key}[{index}]",
                                f"resource type '{resource_type.name}' references "
                                f"unknown metric-set '{set_name}'",
                            )

        adapter = config.storage_adapter
        if adapter is not None and adapter.security_realm:
            if adapter.security_realm not in realms:
                self._warn(
                    "storage-adapter",
                    f"references unknown security-realm '{adapter.security_realm}'",
                )

    @staticmethod
    def _names(config: "Configuration", key: str) -> Set[str]:
        return {name for name in config.section_names(key) if name}

    @staticmethod
    def _resource_types(type_set) -> List:
        return (
            getattr(type_set, "dmr_resource_types", None)
            or getattr(type_set, "jmx_resource_types", None)
            or []
        )

    def _warn(self, location: str, message: str):
        self.validation_issues.append(
            ConfigValidationIssue(
                location=location,
                severity=ConfigValidationSeverity.WARNING,
                message=message,
            )
        )

    def get_validation_summary(self) -> Dict[str, int]:
        """Count issues of the last run by severity"""
        summary = {severity.value: 0 for severity in ConfigValidationSeverity}
        for issue in self.validation_issues:
            summary[issue.severity.value] += 1
        return summary
