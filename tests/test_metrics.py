"""Tests for the metric snapshot model and the snapshot registry."""

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from azure_devops_exporter.metrics import MetricFamily, MetricSnapshot
from azure_devops_exporter.registry import SnapshotRegistry


def project_snapshot(*project_ids: str) -> MetricSnapshot:
    snapshot = MetricSnapshot()
    info = snapshot.family("project_info", "Azure DevOps project", ("project_id",))
    for project_id in project_ids:
        info.add(1, project_id=project_id)
    return snapshot


class TestMetricSnapshot:
    """Test cases for MetricSnapshot and MetricFamily."""

    def test_family_is_prefixed(self):
        snapshot = MetricSnapshot()

        family = snapshot.family("project_info", "Project", ("project_id",))

        assert family.name == "azure_devops_project_info"
        assert "azure_devops_project_info" in snapshot.families

    def test_family_is_reused(self):
        snapshot = MetricSnapshot()

        first = snapshot.family("project_info", "Project", ("project_id",))
        second = snapshot.family("project_info", "Project", ("project_id",))

        assert first is second

    def test_labels_must_match(self):
        family = MetricFamily(name="m", documentation="d", label_names=("a", "b"))

        with pytest.raises(ValueError):
            family.add(1, a="x")

        with pytest.raises(ValueError):
            family.add(1, a="x", b="y", c="z")

    def test_label_values_are_rendered(self):
        family = MetricFamily(
            name="m", documentation="d", label_names=("flag", "missing", "number")
        )

        family.add(True, flag=False, missing=None, number=42)

        sample = family.samples[0]
        assert sample.labels == {"flag": "false", "missing": "", "number": "42"}
        assert sample.value == 1.0

    def test_sample_count(self):
        assert project_snapshot("a", "b", "c").sample_count() == 3

    def test_json_round_trip(self):
        """Test that a snapshot restored from JSON equals the original."""
        snapshot = project_snapshot("a", "b")
        snapshot.family("query_result", "Query", ("query_id",), type="counter").add(
            5, query_id="q"
        )

        restored = MetricSnapshot.model_validate_json(snapshot.model_dump_json())

        assert restored == snapshot
        assert list(restored.families) == list(snapshot.families)


class TestSnapshotRegistry:
    """Test cases for SnapshotRegistry."""

    @pytest.fixture
    def registry(self):
        return SnapshotRegistry()

    @pytest.fixture
    def prometheus_registry(self, registry):
        prometheus_registry = CollectorRegistry()
        prometheus_registry.register(registry)
        return prometheus_registry

    def test_empty_registry(self, prometheus_registry):
        assert generate_latest(prometheus_registry) == b""

    def test_publish_replaces_contribution(self, registry, prometheus_registry):
        registry.publish("Project", project_snapshot("a", "b"))
        registry.publish("Project", project_snapshot("c"))

        output = generate_latest(prometheus_registry).decode()

        assert 'azure_devops_project_info{project_id="c"} 1.0' in output
        assert 'project_id="a"' not in output

    def test_families_merged_across_collectors(self, registry, prometheus_registry):
        registry.publish("One", project_snapshot("a"))
        registry.publish("Two", project_snapshot("b"))

        output = generate_latest(prometheus_registry).decode()

        assert output.count("# TYPE azure_devops_project_info gauge") == 1
        assert 'project_id="a"' in output
        assert 'project_id="b"' in output

    def test_conflicting_label_names_dropped(self, registry, prometheus_registry):
        other = MetricSnapshot()
        other.family("project_info", "Project", ("name",)).add(1, name="x")
        registry.publish("A", project_snapshot("a"))
        registry.publish("B", other)

        output = generate_latest(prometheus_registry).decode()

        assert 'project_id="a"' in output
        assert 'name="x"' not in output

    def test_counter_family(self, registry, prometheus_registry):
        snapshot = MetricSnapshot()
        snapshot.family("query_result", "Query", ("query_id",), type="counter").add(
            5, query_id="q"
        )
        registry.publish("Query", snapshot)

        value = prometheus_registry.get_sample_value(
            "azure_devops_query_result_total", {"query_id": "q"}
        )

        assert value == 5.0

    def test_get_and_owners(self, registry):
        snapshot = project_snapshot("a")
        registry.publish("Project", snapshot)

        assert registry.get("Project") is snapshot
        assert registry.get("Build") is None
        assert registry.owners() == ["Project"]
