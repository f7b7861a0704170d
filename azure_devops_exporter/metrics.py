"""Metric snapshots produced by collectors.

A snapshot is the complete set of observations one collector contributes in
one tick. It is plain data so it can be cached to disk and restored exactly.
"""

from typing import Literal

from pydantic import BaseModel

from azure_devops_exporter.constants import METRIC_PREFIX

MetricType = Literal["gauge", "counter"]


class MetricSample(BaseModel):
    labels: dict[str, str]
    value: float


class MetricFamily(BaseModel):
    name: str
    documentation: str
    type: MetricType = "gauge"
    label_names: tuple[str, ...] = ()
    samples: list[MetricSample] = []

    def add(self, value: float | int | bool, **labels) -> None:
        """Add an observation; labels must match the family's label names exactly."""
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"Metric {self.name} expects labels {sorted(self.label_names)}, "
                f"got {sorted(labels)}"
            )
        self.samples.append(
            MetricSample(
                labels={name: _label_value(labels[name]) for name in self.label_names},
                value=float(value),
            )
        )


class MetricSnapshot(BaseModel):
    families: dict[str, MetricFamily] = {}

    def family(
        self,
        name: str,
        documentation: str,
        label_names: tuple[str, ...] | list[str],
        type: MetricType = "gauge",
    ) -> MetricFamily:
        """Get or create the family `<prefix>_<name>`."""
        full_name = f"{METRIC_PREFIX}_{name}"
        if full_name not in self.families:
            self.families[full_name] = MetricFamily(
                name=full_name,
                documentation=documentation,
                type=type,
                label_names=tuple(label_names),
            )
        return self.families[full_name]

    def sample_count(self) -> int:
        return sum(len(f.samples) for f in self.families.values())


def _label_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
