"""Process-wide registry of collector snapshots.

Each collector owns exactly one slot. Publishing swaps the whole slot, so a
scrape sees either the previous or the new snapshot of a collector, never a
mix of both.
"""

import logging
import threading
from collections.abc import Iterable

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from azure_devops_exporter.metrics import MetricFamily, MetricSnapshot

logger = logging.getLogger(__name__)


class SnapshotRegistry(Collector):
    """Aggregates the latest snapshot of every collector for prometheus_client."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[str, MetricSnapshot] = {}

    def publish(self, owner: str, snapshot: MetricSnapshot) -> None:
        """Replace the contribution of `owner` with `snapshot`."""
        with self._lock:
            self._snapshots[owner] = snapshot

    def get(self, owner: str) -> MetricSnapshot | None:
        with self._lock:
            return self._snapshots.get(owner)

    def owners(self) -> list[str]:
        with self._lock:
            return sorted(self._snapshots)

    def collect(self) -> Iterable[Metric]:
        with self._lock:
            snapshots = sorted(self._snapshots.items())

        merged: dict[str, list[MetricFamily]] = {}
        for owner, snapshot in snapshots:
            for family in snapshot.families.values():
                existing = merged.setdefault(family.name, [])
                if existing and existing[0].label_names != family.label_names:
                    logger.warning(
                        "Dropping metric %s from %s, label names differ from another collector",
                        family.name,
                        owner,
                    )
                    continue
                existing.append(family)

        for families in merged.values():
            yield _to_prometheus(families)


def _to_prometheus(families: list[MetricFamily]) -> Metric:
    first = families[0]
    metric_class = CounterMetricFamily if first.type == "counter" else GaugeMetricFamily
    metric = metric_class(first.name, first.documentation, labels=first.label_names)
    for family in families:
        for sample in family.samples:
            metric.add_metric(
                [sample.labels[name] for name in family.label_names], sample.value
            )
    return metric
