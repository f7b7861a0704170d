"""Build definitions and the builds queued since the previous collection."""

from datetime import timedelta

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    display_name,
    duration,
    project_key,
    timestamp,
    utcnow,
    web_url,
)
from azure_devops_exporter.metrics import MetricSnapshot


class BuildCollector(MetricsCollector):
    name = "Build"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        min_time = utcnow() - timedelta(seconds=self.settings.scrape.interval("time_build"))

        snapshot = MetricSnapshot()
        definition_info = snapshot.family(
            "build_definition_info",
            "Build definition",
            (
                "project_id",
                "build_definition_id",
                "build_definition_name",
                "path",
                "queue_status",
                "url",
            ),
        )
        build_info = snapshot.family(
            "build_info",
            "Build",
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
                "reason",
                "result",
                "url",
            ),
        )
        build_status = snapshot.family(
            "build_status",
            "Build timestamps and duration",
            (
                "project_id",
                "build_definition_id",
                "build_id",
                "build_number",
                "result",
                "type",
            ),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for definition in client.list_build_definitions(project_id):
                definition_info.add(
                    1,
                    project_id=project_id,
                    build_definition_id=definition.get("id"),
                    build_definition_name=definition.get("name"),
                    path=definition.get("path"),
                    queue_status=definition.get("queueStatus"),
                    url=web_url(definition),
                )

            for build in client.list_builds(project_id, min_time):
                definition = build.get("definition") or {}
                labels = {
                    "project_id": project_id,
                    "build_definition_id": definition.get("id"),
                    "build_id": build.get("id"),
                    "build_number": build.get("buildNumber"),
                }
                build_info.add(
                    1,
                    **labels,
                    agent_pool_id=((build.get("queue") or {}).get("pool") or {}).get("id"),
                    requested_by=display_name(build.get("requestedBy")),
                    source_branch=build.get("sourceBranch"),
                    source_version=build.get("sourceVersion"),
                    status=build.get("status"),
                    reason=build.get("reason"),
                    result=build.get("result"),
                    url=web_url(build),
                )

                result = build.get("result")
                build_status.add(
                    timestamp(build.get("queueTime")), **labels, result=result, type="queued"
                )
                build_status.add(
                    timestamp(build.get("startTime")), **labels, result=result, type="started"
                )
                build_status.add(
                    timestamp(build.get("finishTime")), **labels, result=result, type="finished"
                )
                elapsed = duration(build.get("startTime"), build.get("finishTime"))
                if elapsed is not None:
                    build_status.add(elapsed, **labels, result=result, type="duration")

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot
