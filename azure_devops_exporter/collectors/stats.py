"""Per-project build statistics.

Statistics are computed over the builds queued within the last
`summary_max_age` seconds, grouped by build definition.
"""

from collections import defaultdict
from datetime import timedelta

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    duration,
    project_key,
    utcnow,
)
from azure_devops_exporter.metrics import MetricSnapshot


class StatsCollector(MetricsCollector):
    name = "Stats"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        min_time = utcnow() - timedelta(seconds=self.settings.stats_summary_max_age)

        snapshot = MetricSnapshot()
        builds_count = snapshot.family(
            "stats_project_builds",
            "Number of builds by result",
            ("project_id", "build_definition_id", "result"),
        )
        build_duration = snapshot.family(
            "stats_project_build_duration",
            "Average build duration in seconds by result",
            ("project_id", "build_definition_id", "result"),
        )
        build_wait = snapshot.family(
            "stats_project_build_wait",
            "Average time in seconds builds waited for an agent",
            ("project_id", "build_definition_id"),
        )
        success_rate = snapshot.family(
            "stats_project_success_rate",
            "Ratio of succeeded builds among finished builds",
            ("project_id", "build_definition_id"),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            by_result: dict[tuple, int] = defaultdict(int)
            durations: dict[tuple, list[float]] = defaultdict(list)
            waits: dict[str, list[float]] = defaultdict(list)
            finished: dict[str, list[bool]] = defaultdict(list)

            for build in client.list_builds(project_id, min_time):
                definition_id = str((build.get("definition") or {}).get("id", ""))
                result = build.get("result") or "unknown"
                by_result[(definition_id, result)] += 1

                elapsed = duration(build.get("startTime"), build.get("finishTime"))
                if elapsed is not None:
                    durations[(definition_id, result)].append(elapsed)
                wait = duration(build.get("queueTime"), build.get("startTime"))
                if wait is not None:
                    waits[definition_id].append(wait)
                if build.get("status") == "completed":
                    finished[definition_id].append(result == "succeeded")

            for (definition_id, result), count in sorted(by_result.items()):
                labels = {
                    "project_id": project_id,
                    "build_definition_id": definition_id,
                    "result": result,
                }
                builds_count.add(count, **labels)
                if durations[(definition_id, result)]:
                    build_duration.add(_mean(durations[(definition_id, result)]), **labels)

            for definition_id, values in sorted(waits.items()):
                build_wait.add(
                    _mean(values), project_id=project_id, build_definition_id=definition_id
                )
            for definition_id, outcomes in sorted(finished.items()):
                success_rate.add(
                    sum(outcomes) / len(outcomes),
                    project_id=project_id,
                    build_definition_id=definition_id,
                )

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)
