"""
Tests for configuration tree validation.
"""

import pytest

from agentconfig.exceptions import ConfigValidationError, ErrorClassification
from agentconfig.model import (
    Configuration,
    DMRMetric,
    DMRMetricSet,
    DMRResourceType,
    DMRResourceTypeSet,
    JMXResourceType,
    JMXResourceTypeSet,
    LocalDMR,
    ManagedServers,
    MetricsExporter,
    RemoteDMR,
    RemoteJMX,
    SecurityRealm,
    StorageAdapter,
    Subsystem,
)
from agentconfig.validation import (
    ConfigValidationSeverity,
    ConfigValidator,
)


@pytest.fixture
def validator():
    return ConfigValidator()


def _errors(issues):
    return [i for i in issues if i.severity == ConfigValidationSeverity.ERROR]


def _warnings(issues):
    return [i for i in issues if i.severity == ConfigValidationSeverity.WARNING]


class TestConfigValidator:
    """Test the tree-wide validator"""

    def test_sample_configuration_is_valid(self, validator, sample_config):
        issues = validator.validate(sample_config)

        assert _errors(issues) == []
        assert _warnings(issues) == []

    def test_empty_configuration_is_valid(self, validator):
        assert validator.validate(Configuration()) == []

    def test_missing_name_reports_section_and_position(self, validator):
        config = Configuration(
            dmr_metric_sets=[
                DMRMetricSet(name="ok"),
                DMRMetricSet(name="  "),
            ]
        )

        errors = _errors(validator.validate(config))

        assert len(errors) == 1
        assert errors[0].location == "metric-set-dmr[1]"
        assert "name must be specified" in errors[0].message

    def test_duplicate_names(self, validator):
        config = Configuration(
            security_realms=[
                SecurityRealm(name="realm", keystore_path="a"),
                SecurityRealm(name="realm", keystore_path="b"),
            ]
        )

        errors = _errors(validator.validate(config))

        assert len(errors) == 1
        assert errors[0].location == "security-realm[1]"
        assert "duplicate name 'realm'" in errors[0].message

    def test_nested_metric_needs_attribute(self, validator):
        config = Configuration(
            dmr_metric_sets=[
                DMRMetricSet(name="set", dmr_metrics=[DMRMetric(name="no locator")])
            ]
        )

        errors = _errors(validator.validate(config))

        assert [e.location for e in errors] == ["metric-set-dmr[0].metric-dmr[0]"]
        assert "attribute must be specified" in errors[0].message
        assert errors[0].element == "no locator"
        assert str(errors[0]).startswith("metric-set-dmr[0].metric-dmr[0] ('no locator')")

    def test_metric_type_must_be_known(self, validator):
        config = Configuration(
            dmr_metric_sets=[
                DMRMetricSet(
                    name="set",
                    dmr_metrics=[
                        DMRMetric(name="m", attribute="a", metric_type="histogram")
                    ],
                )
            ]
        )

        errors = _errors(validator.validate(config))

        assert len(errors) == 1
        assert "metric-type" in errors[0].message

    def test_collects_all_errors(self, validator):
        config = Configuration(
            subsystem=Subsystem(auto_discovery_scan_period_secs=0),
            metrics_exporter=MetricsExporter(port=70000),
            dmr_resource_type_sets=[
                DMRResourceTypeSet(
                    name="types", dmr_resource_types=[DMRResourceType(name="no path")]
                )
            ],
            jmx_resource_type_sets=[
                JMXResourceTypeSet(
                    name="jmx types", jmx_resource_types=[JMXResourceType(name="bare")]
                )
            ],
            managed_servers=ManagedServers(
                remote_dmr=[RemoteDMR(name="remote")],
                remote_jmx=[RemoteJMX(name="jolokia")],
            ),
            storage_adapter=StorageAdapter(url="ftp://nope"),
        )

        locations = [e.location for e in _errors(validator.validate(config))]

        assert locations == [
            "resource-type-set-dmr[0].resource-type-dmr[0]",
            "resource-type-set-jmx[0].resource-type-jmx[0]",
            "resource-type-set-jmx[0].resource-type-jmx[0]",
            "subsystem.auto-discovery-scan-period-secs",
            "metrics-exporter.port",
            "storage-adapter.url",
            "managed-servers.remote-dmr[0]",
            "managed-servers.remote-jmx[0]",
        ]

    def test_unknown_references_are_warnings(self, validator):
        config = Configuration(
            managed_servers=ManagedServers(
                local_dmr=LocalDMR(name="local", resource_type_sets=["missing set"])
            ),
            storage_adapter=StorageAdapter(security_realm="missing realm"),
        )

        issues = validator.validate(config)

        assert _errors(issues) == []
        messages = [w.message for w in _warnings(issues)]
        assert any("missing set" in m for m in messages)
        assert any("missing realm" in m for m in messages)
        assert validator.get_validation_summary() == {"error": 0, "warning": 2}


class TestValidateOrRaise:
    """Test the raising entry point"""

    def test_raises_with_all_errors(self, validator):
        config = Configuration(
            dmr_metric_sets=[DMRMetricSet(), DMRMetricSet(name="")],
        )

        with pytest.raises(ConfigValidationError) as exc_info:
            validator.validate_or_raise(config)

        error = exc_info.value
        assert error.classification == ErrorClassification.VALIDATION
        assert error.locations == ["metric-set-dmr[0]", "metric-set-dmr[1]"]
        assert "metric-set-dmr[0]: name must be specified" in str(error)
        assert error.to_dict()["issues"][1]["location"] == "metric-set-dmr[1]"

    def test_returns_and_logs_warnings(self, validator, log_records):
        config = Configuration(storage_adapter=StorageAdapter(security_realm="ghost"))

        warnings = validator.validate_or_raise(config)

        assert len(warnings) == 1
        assert any("ghost" in record for record in log_records)
