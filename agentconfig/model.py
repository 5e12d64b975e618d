"""
Configuration tree for the monitoring agent.

Every YAML key maps to a pydantic field through a hyphenated alias. Fields are
optional at the type level: a missing name or locator is reported by the
validator with its location instead of failing the parse. Field presence is
tracked by pydantic (``model_fields_set``) so that serialization only writes
what was actually set.
"""

import os
import re
from typing import Annotated, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from agentconfig.validation import ConfigValidationIssue, ConfigValidationSeverity


METRIC_TYPES = ("gauge", "counter")
PROXY_MODES = ("master", "slave", "disabled")

# Sections merged by an overlay; everything else is preserved from the base tree
OVERLAY_SECTIONS = (
    "metric-set-dmr",
    "resource-type-set-dmr",
    "metric-set-jmx",
    "resource-type-set-jmx",
)


def _to_yaml_key(field_name: str) -> str:
    return field_name.replace("_", "-")


def _error(location: str, message: str) -> ConfigValidationIssue:
    return ConfigValidationIssue(
        location=location, severity=ConfigValidationSeverity.ERROR, message=message
    )


def _check_port(location: str, port: Optional[int]) -> List[ConfigValidationIssue]:
    if port is not None and not 1 <= port <= 65535:
        return [_error(f"{location}.port", f"port must be between 1 and 65535, got {port}")]
    return []


# ${NAME} or ${NAME:default}, NAME optionally prefixed with "env."
_EXPRESSION_RE = re.compile(r"^\$\{(?:env\.)?([A-Za-z_][A-Za-z0-9_.]*)(?::([^}]*))?\}$")


def _check_boolean_expression(value: Union[bool, str]) -> Union[bool, str]:
    if isinstance(value, bool):
        return value
    if value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if not _EXPRESSION_RE.match(value.strip()):
        raise ValueError(
            f"'{value}' is neither a boolean nor a ${{NAME:default}} expression"
        )
    return value


def evaluate_boolean(value: Union[bool, str, None]) -> bool:
    """Resolve a boolean expression against the environment.

    An expression whose variable is unset falls back to its default, and is
    false when it has none. Resolved text counts as true only when it reads
    "true", ignoring case.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    match = _EXPRESSION_RE.match(value.strip())
    if match is None:
        return value.strip().lower() == "true"
    resolved = os.environ.get(match.group(1), match.group(2))
    return resolved is not None and resolved.strip().lower() == "true"


# Expressions are stored unresolved and written back as they were read
BooleanExpression = Annotated[
    Union[bool, str], AfterValidator(_check_boolean_expression)
]


class ConfigElement(BaseModel):
    """Base for every node of the configuration tree"""

    model_config = ConfigDict(
        alias_generator=_to_yaml_key,
        populate_by_name=True,
        extra="forbid",
    )

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        """Return the rule violations of this element and its children"""
        return []


class NamedElement(ConfigElement):
    """An element identified by a name unique within its section"""

    name: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        if self.name is None or not self.name.strip():
            return [_error(location, "name must be specified")]
        return []


class ToggledElement(NamedElement):
    """A named element that can be switched off, possibly through the environment"""

    enabled: BooleanExpression = True

    def is_enabled(self) -> bool:
        return evaluate_boolean(self.enabled)


NamedT = TypeVar("NamedT", bound=NamedElement)


def collect_duplicate_names(
    elements: Optional[Sequence[NamedElement]], location: str
) -> List[ConfigValidationIssue]:
    """Report every element reusing a name already taken earlier in the section"""
    issues: List[ConfigValidationIssue] = []
    seen: Dict[str, int] = {}
    for index, element in enumerate(elements or []):
        if not element.name or not element.name.strip():
            continue
        if element.name in seen:
            issue = _error(
                f"{location}[{index}]",
                f"duplicate name '{element.name}' "
                f"(first defined at {location}[{seen[element.name]}])",
            )
            issue.element = element.name
            issues.append(issue)
        else:
            seen[element.name] = index
    return issues


def collect_section_issues(
    elements: Optional[Sequence[NamedElement]], location: str
) -> List[ConfigValidationIssue]:
    """Validate every element of a named section and the uniqueness of names"""
    issues: List[ConfigValidationIssue] = []
    duplicates: Dict[str, List[ConfigValidationIssue]] = {}
    for issue in collect_duplicate_names(elements, location):
        duplicates.setdefault(issue.location, []).append(issue)

    for index, element in enumerate(elements or []):
        element_location = f"{location}[{index}]"
        element_issues = element.collect_issues(element_location)
        for issue in element_issues:
            if issue.element is None:
                issue.element = (element.name or "").strip() or None
        issues.extend(element_issues)
        issues.extend(duplicates.get(element_location, []))
    return issues


def merge_named(
    existing: Optional[Sequence[NamedT]], additions: Iterable[NamedT]
) -> List[NamedT]:
    """Add or replace elements by name, keeping the position of replaced ones"""
    merged = list(existing or [])
    positions = {element.name: i for i, element in enumerate(merged)}
    for element in additions:
        element = element.model_copy(deep=True)
        if element.name in positions:
            merged[positions[element.name]] = element
        else:
            positions[element.name] = len(merged)
            merged.append(element)
    return merged


# Subsystem toggles


class Subsystem(ConfigElement):
    enabled: bool = True
    auto_discovery_scan_period_secs: Optional[int] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        period = self.auto_discovery_scan_period_secs
        if period is not None and period <= 0:
            return [
                _error(
                    f"{location}.auto-discovery-scan-period-secs",
                    f"scan period must be positive, got {period}",
                )
            ]
        return []


class MetricsExporterProxy(ConfigElement):
    mode: Optional[str] = None
    data_dir: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        if self.mode is not None and self.mode not in PROXY_MODES:
            return [
                _error(
                    f"{location}.mode",
                    f"proxy mode must be one of {list(PROXY_MODES)}, got '{self.mode}'",
                )
            ]
        return []


class MetricsExporter(ConfigElement):
    enabled: bool = True
    host: Optional[str] = None
    port: Optional[int] = None
    config_dir: Optional[str] = None
    config_file: Optional[str] = None
    proxy: Optional[MetricsExporterProxy] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = _check_port(location, self.port)
        if self.proxy is not None:
            issues.extend(self.proxy.collect_issues(f"{location}.proxy"))
        return issues


class SecurityRealm(NamedElement):
    keystore_path: Optional[str] = None
    keystore_password: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.keystore_path:
            issues.append(_error(location, "keystore-path must be specified"))
        return issues


class StorageAdapter(ConfigElement):
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    feed_id: Optional[str] = None
    security_realm: Optional[str] = None
    connect_timeout_secs: Optional[int] = None
    read_timeout_secs: Optional[int] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = []
        if self.url is not None and not self.url.startswith(("http://", "https://")):
            issues.append(
                _error(f"{location}.url", f"url must be http or https, got '{self.url}'")
            )
        for key in ("connect_timeout_secs", "read_timeout_secs"):
            value = getattr(self, key)
            if value is not None and value <= 0:
                issues.append(
                    _error(
                        f"{location}.{_to_yaml_key(key)}",
                        f"timeout must be positive, got {value}",
                    )
                )
        return issues


# Metrics


class MetricDefinition(NamedElement):
    """Fields shared by DMR and JMX metrics"""

    attribute: Optional[str] = None
    metric_units: Optional[str] = None
    metric_type: Optional[str] = None
    metric_family: Optional[str] = None
    metric_labels: Optional[Dict[str, str]] = None
    metric_expression: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.attribute:
            issues.append(_error(location, "attribute must be specified"))
        if self.metric_type is not None and self.metric_type not in METRIC_TYPES:
            issues.append(
                _error(
                    location,
                    f"metric-type must be one of {list(METRIC_TYPES)}, "
                    f"got '{self.metric_type}'",
                )
            )
        return issues


class DMRMetric(MetricDefinition):
    path: Optional[str] = None


class JMXMetric(MetricDefinition):
    object_name: Optional[str] = None


class DMRMetricSet(ToggledElement):
    dmr_metrics: Optional[List[DMRMetric]] = Field(None, alias="metric-dmr")

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        issues.extend(collect_section_issues(self.dmr_metrics, f"{location}.metric-dmr"))
        return issues


class JMXMetricSet(ToggledElement):
    jmx_metrics: Optional[List[JMXMetric]] = Field(None, alias="metric-jmx")

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        issues.extend(collect_section_issues(self.jmx_metrics, f"{location}.metric-jmx"))
        return issues


# Resource types


class DMRResourceConfig(NamedElement):
    path: Optional[str] = None
    attribute: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.attribute:
            issues.append(_error(location, "attribute must be specified"))
        return issues


class JMXResourceConfig(NamedElement):
    object_name: Optional[str] = None
    attribute: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.attribute:
            issues.append(_error(location, "attribute must be specified"))
        return issues


class DMRResourceType(NamedElement):
    path: Optional[str] = None
    parents: Optional[List[str]] = None
    metric_sets: Optional[List[str]] = None
    resource_name_template: Optional[str] = None
    resource_config_dmr: Optional[List[DMRResourceConfig]] = None
    metric_labels: Optional[Dict[str, str]] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.path:
            issues.append(_error(location, "path must be specified"))
        issues.extend(
            collect_section_issues(
                self.resource_config_dmr, f"{location}.resource-config-dmr"
            )
        )
        return issues


class JMXResourceType(NamedElement):
    object_name: Optional[str] = None
    parents: Optional[List[str]] = None
    metric_sets: Optional[List[str]] = None
    resource_name_template: Optional[str] = None
    resource_config_jmx: Optional[List[JMXResourceConfig]] = None
    metric_labels: Optional[Dict[str, str]] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.object_name:
            issues.append(_error(location, "object-name must be specified"))
        if not self.resource_name_template:
            issues.append(_error(location, "resource-name-template must be specified"))
        issues.extend(
            collect_section_issues(
                self.resource_config_jmx, f"{location}.resource-config-jmx"
            )
        )
        return issues


class DMRResourceTypeSet(ToggledElement):
    dmr_resource_types: Optional[List[DMRResourceType]] = Field(
        None, alias="resource-type-dmr"
    )

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        issues.extend(
            collect_section_issues(
                self.dmr_resource_types, f"{location}.resource-type-dmr"
            )
        )
        return issues


class JMXResourceTypeSet(ToggledElement):
    jmx_resource_types: Optional[List[JMXResourceType]] = Field(
        None, alias="resource-type-jmx"
    )

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        issues.extend(
            collect_section_issues(
                self.jmx_resource_types, f"{location}.resource-type-jmx"
            )
        )
        return issues


# Managed servers


class WaitFor(NamedElement):
    pass


class ManagedServer(ToggledElement):
    """Fields shared by every managed server descriptor"""

    resource_type_sets: Optional[List[str]] = None
    wait_for: Optional[List[WaitFor]] = None
    metric_labels: Optional[Dict[str, str]] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        for index, wait_for in enumerate(self.wait_for or []):
            issues.extend(wait_for.collect_issues(f"{location}.wait-for[{index}]"))
        return issues


class LocalDMR(ManagedServer):
    pass


class LocalJMX(ManagedServer):
    mbean_server_name: Optional[str] = None


class RemoteDMR(ManagedServer):
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_ssl: Optional[bool] = None
    security_realm: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.host:
            issues.append(_error(location, "host must be specified"))
        issues.extend(_check_port(location, self.port))
        return issues


class RemoteJMX(ManagedServer):
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    security_realm: Optional[str] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = super().collect_issues(location)
        if not self.url:
            issues.append(_error(location, "url must be specified"))
        return issues


class ManagedServers(ConfigElement):
    local_dmr: Optional[LocalDMR] = None
    local_jmx: Optional[LocalJMX] = None
    remote_dmr: Optional[List[RemoteDMR]] = None
    remote_jmx: Optional[List[RemoteJMX]] = None

    def collect_issues(self, location: str) -> List[ConfigValidationIssue]:
        issues = []
        if self.local_dmr is not None:
            issues.extend(self.local_dmr.collect_issues(f"{location}.local-dmr"))
        if self.local_jmx is not None:
            issues.extend(self.local_jmx.collect_issues(f"{location}.local-jmx"))
        issues.extend(collect_section_issues(self.remote_dmr, f"{location}.remote-dmr"))
        issues.extend(collect_section_issues(self.remote_jmx, f"{location}.remote-jmx"))
        return issues

    def all_servers(self) -> List[ManagedServer]:
        servers: List[ManagedServer] = []
        if self.local_dmr is not None:
            servers.append(self.local_dmr)
        if self.local_jmx is not None:
            servers.append(self.local_jmx)
        servers.extend(self.remote_dmr or [])
        servers.extend(self.remote_jmx or [])
        return servers


# Platform


class PlatformToggle(ConfigElement):
    enabled: bool = True


class Platform(ConfigElement):
    enabled: bool = False
    machine_id: Optional[str] = None
    file_stores: Optional[PlatformToggle] = None
    memory: Optional[PlatformToggle] = None
    processors: Optional[PlatformToggle] = None
    power_sources: Optional[PlatformToggle] = None


class Configuration(ConfigElement):
    """Root of the configuration tree"""

    subsystem: Optional[Subsystem] = None
    metrics_exporter: Optional[MetricsExporter] = None
    security_realms: Optional[List[SecurityRealm]] = Field(None, alias="security-realm")
    storage_adapter: Optional[StorageAdapter] = None
    dmr_metric_sets: Optional[List[DMRMetricSet]] = Field(None, alias="metric-set-dmr")
    dmr_resource_type_sets: Optional[List[DMRResourceTypeSet]] = Field(
        None, alias="resource-type-set-dmr"
    )
    jmx_metric_sets: Optional[List[JMXMetricSet]] = Field(None, alias="metric-set-jmx")
    jmx_resource_type_sets: Optional[List[JMXResourceTypeSet]] = Field(
        None, alias="resource-type-set-jmx"
    )
    managed_servers: Optional[ManagedServers] = None
    platform: Optional[Platform] = None

    @classmethod
    def field_for_key(cls, key: str) -> str:
        """Map a YAML section key to the python field holding it"""
        for name, info in cls.model_fields.items():
            if (info.alias or _to_yaml_key(name)) == key:
                return name
        raise KeyError(f"Unknown configuration section '{key}'")

    def get_section(self, key: str):
        return getattr(self, self.field_for_key(key))

    def section_names(self, key: str) -> List[Optional[str]]:
        """Element names of a named section in their stored order"""
        return [element.name for element in self.get_section(key) or []]

    def copy_tree(self) -> "Configuration":
        """Deep copy that keeps track of which fields were set"""
        return self.model_copy(deep=True)

    def overlay(self, other: "Configuration") -> "Configuration":
        """Merge the metric and resource-type sections of other into this tree"""
        for key in OVERLAY_SECTIONS:
            additions = other.get_section(key)
            if not additions:
                continue
            field_name = self.field_for_key(key)
            setattr(self, field_name, merge_named(getattr(self, field_name), additions))
        return self
