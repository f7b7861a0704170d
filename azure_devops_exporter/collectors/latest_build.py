"""Latest build of every build definition."""

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    display_name,
    duration,
    project_key,
    timestamp,
)
from azure_devops_exporter.metrics import MetricSnapshot


class LatestBuildCollector(MetricsCollector):
    name = "LatestBuild"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        info = snapshot.family(
            "build_latest_info",
            "Latest build of a build definition",
            (
                "project_id",
                "build_definition_id",
                "build_id",
                "build_number",
                "agent_pool_id",
                "requested_by",
                "source_branch",
                "source_version",
                "status",
                "result",
            ),
        )
        status = snapshot.family(
            "build_latest_status",
            "Timestamps and duration of the latest build of a build definition",
            ("project_id", "build_definition_id", "build_id", "build_number", "type"),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for build in client.list_latest_builds(project_id):
                definition = build.get("definition") or {}
                labels = {
                    "project_id": project_id,
                    "build_definition_id": definition.get("id"),
                    "build_id": build.get("id"),
                    "build_number": build.get("buildNumber"),
                }
                info.add(
                    1,
                    **labels,
                    agent_pool_id=((build.get("queue") or {}).get("pool") or {}).get("id"),
                    requested_by=display_name(build.get("requestedBy")),
                    source_branch=build.get("sourceBranch"),
                    source_version=build.get("sourceVersion"),
                    status=build.get("status"),
                    result=build.get("result"),
                )
                status.add(timestamp(build.get("queueTime")), **labels, type="queued")
                status.add(timestamp(build.get("startTime")), **labels, type="started")
                status.add(timestamp(build.get("finishTime")), **labels, type="finished")

                elapsed = duration(build.get("startTime"), build.get("finishTime"))
                if elapsed is not None:
                    status.add(elapsed, **labels, type="duration")

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot
