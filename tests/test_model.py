"""
Tests for the configuration tree value objects.
"""

import pytest

from agentconfig.exceptions import ConfigFormatError
from agentconfig.model import (
    OVERLAY_SECTIONS,
    Configuration,
    DMRMetric,
    DMRMetricSet,
    JMXMetricSet,
    ManagedServers,
    RemoteDMR,
    merge_named,
)


def _metric_set(name, *metric_names):
    return DMRMetricSet(
        name=name,
        dmr_metrics=[DMRMetric(name=m, attribute="attr") for m in metric_names],
    )


class TestConfigurationCopy:
    """Test deep copies of the configuration tree"""

    def test_copy_is_equal_and_independent(self, sample_config):
        copy = sample_config.copy_tree()

        assert copy == sample_config
        assert copy is not sample_config

        copy.dmr_metric_sets[0].name = "changed"
        copy.managed_servers.remote_dmr[0].port = 1

        assert sample_config.dmr_metric_sets[0].name == "first metric set d"
        assert sample_config.managed_servers.remote_dmr[0].port == 9999

    def test_copy_keeps_field_presence(self, sample_config):
        copy = sample_config.copy_tree()

        assert copy.model_fields_set == sample_config.model_fields_set
        metric_set = copy.dmr_metric_sets[1]
        assert "enabled" not in metric_set.model_fields_set


class TestSections:
    """Test section lookup by YAML key"""

    def test_field_for_key(self):
        assert Configuration.field_for_key("metric-set-dmr") == "dmr_metric_sets"
        assert Configuration.field_for_key("security-realm") == "security_realms"
        assert Configuration.field_for_key("managed-servers") == "managed_servers"

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            Configuration.field_for_key("metric-set-snmp")

    def test_section_names_in_order(self, sample_config):
        assert sample_config.section_names("metric-set-dmr") == [
            "first metric set d",
            "second metric set d",
        ]
        assert Configuration().section_names("metric-set-jmx") == []

    def test_overlay_whitelist(self):
        assert OVERLAY_SECTIONS == (
            "metric-set-dmr",
            "resource-type-set-dmr",
            "metric-set-jmx",
            "resource-type-set-jmx",
        )


class TestMergeNamed:
    """Test add-or-replace merging of named sections"""

    def test_appends_new_names(self):
        merged = merge_named([_metric_set("a", "m1")], [_metric_set("b", "m2")])

        assert [s.name for s in merged] == ["a", "b"]

    def test_replaces_in_place(self):
        existing = [_metric_set("a", "m1"), _metric_set("b", "m2")]
        merged = merge_named(existing, [_metric_set("a", "m3", "m4")])

        assert [s.name for s in merged] == ["a", "b"]
        assert [m.name for m in merged[0].dmr_metrics] == ["m3", "m4"]
        assert [m.name for m in existing[0].dmr_metrics] == ["m1"]

    def test_handles_missing_existing(self):
        merged = merge_named(None, [_metric_set("a")])
        assert [s.name for s in merged] == ["a"]

    def test_additions_are_copied(self):
        addition = _metric_set("a", "m1")
        merged = merge_named([], [addition])

        addition.name = "mutated"
        assert merged[0].name == "a"


class TestOverlay:
    """Test merging an overlay tree into a base tree"""

    def test_overlay_adds_and_replaces_metric_sets(self):
        base = Configuration(
            dmr_metric_sets=[_metric_set("M1", "old")],
            managed_servers=ManagedServers(
                remote_dmr=[RemoteDMR(name="S1", host="localhost", port=9990)]
            ),
        )
        overlay = Configuration(
            dmr_metric_sets=[_metric_set("M2", "new"), _metric_set("M1", "replaced")]
        )

        base.overlay(overlay)

        assert base.section_names("metric-set-dmr") == ["M1", "M2"]
        assert base.dmr_metric_sets[0].dmr_metrics[0].name == "replaced"
        assert base.managed_servers.remote_dmr[0].name == "S1"

    def test_overlay_ignores_other_sections(self):
        base = Configuration(managed_servers=ManagedServers())
        overlay = Configuration(
            managed_servers=ManagedServers(
                remote_dmr=[RemoteDMR(name="intruder", host="evil")]
            ),
            jmx_metric_sets=[JMXMetricSet(name="J1")],
        )

        base.overlay(overlay)

        assert base.managed_servers.remote_dmr is None
        assert base.section_names("metric-set-jmx") == ["J1"]

    def test_overlay_marks_merged_sections_as_set(self):
        base = Configuration()
        base.overlay(Configuration(dmr_metric_sets=[_metric_set("M1")]))

        assert "dmr_metric_sets" in base.model_fields_set


class TestBooleanExpressions:
    """Test enabled flags given as environment expressions"""

    def test_plain_booleans(self):
        assert DMRMetricSet(name="s").is_enabled() is True
        assert DMRMetricSet(name="s", enabled=False).is_enabled() is False
        assert DMRMetricSet(name="s", enabled="FALSE").enabled is False

    def test_expression_resolves_from_environment(self, monkeypatch):
        metric_set = DMRMetricSet(name="s", enabled="${env.AGENT_SET_ENABLED:true}")

        monkeypatch.delenv("AGENT_SET_ENABLED", raising=False)
        assert metric_set.is_enabled() is True

        monkeypatch.setenv("AGENT_SET_ENABLED", "false")
        assert metric_set.is_enabled() is False

    def test_expression_without_default(self, monkeypatch):
        server = RemoteDMR(name="remote", host="h", enabled="${AGENT_REMOTE_ON}")

        monkeypatch.delenv("AGENT_REMOTE_ON", raising=False)
        assert server.is_enabled() is False

        monkeypatch.setenv("AGENT_REMOTE_ON", "True")
        assert server.is_enabled() is True

    def test_expression_survives_round_trip(self, serializer):
        config = serializer.loads(
            "metric-set-jmx:\n- name: j\n  enabled: ${env.JMX_ON:false}\n"
        )

        reloaded = serializer.loads(serializer.dumps(config))

        assert reloaded.jmx_metric_sets[0].enabled == "${env.JMX_ON:false}"

    def test_rejects_other_text(self, serializer):
        with pytest.raises(ConfigFormatError) as exc_info:
            serializer.loads("metric-set-dmr:\n- name: s\n  enabled: sometimes\n")

        assert exc_info.value.location.startswith("metric-set-dmr.0.enabled")
