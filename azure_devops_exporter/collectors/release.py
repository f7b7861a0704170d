"""Release definitions, releases and the status of their environments."""

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    display_name,
    project_key,
    timestamp,
    web_url,
)
from azure_devops_exporter.metrics import MetricSnapshot


class ReleaseCollector(MetricsCollector):
    name = "Release"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        definition_info = snapshot.family(
            "release_definition_info",
            "Release definition",
            (
                "project_id",
                "release_definition_id",
                "release_definition_name",
                "path",
                "url",
            ),
        )
        release_info = snapshot.family(
            "release_info",
            "Release",
            (
                "project_id",
                "release_id",
                "release_definition_id",
                "release_name",
                "status",
                "reason",
                "requested_by",
                "url",
            ),
        )
        environment_status = snapshot.family(
            "release_environment_status",
            "Release environment timestamps and deploy duration",
            (
                "project_id",
                "release_id",
                "release_definition_id",
                "environment_id",
                "environment_name",
                "status",
                "type",
            ),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for definition in client.list_release_definitions(project_id):
                definition_id = definition.get("id")
                definition_info.add(
                    1,
                    project_id=project_id,
                    release_definition_id=definition_id,
                    release_definition_name=definition.get("name"),
                    path=definition.get("path"),
                    url=web_url(definition),
                )

                for release in client.list_releases(project_id, definition_id=definition_id):
                    release_id = release.get("id")
                    release_info.add(
                        1,
                        project_id=project_id,
                        release_id=release_id,
                        release_definition_id=definition_id,
                        release_name=release.get("name"),
                        status=release.get("status"),
                        reason=release.get("reason"),
                        requested_by=display_name(release.get("createdBy")),
                        url=web_url(release),
                    )

                    for environment in release.get("environments") or []:
                        labels = {
                            "project_id": project_id,
                            "release_id": release_id,
                            "release_definition_id": definition_id,
                            "environment_id": environment.get("id"),
                            "environment_name": environment.get("name"),
                            "status": environment.get("status"),
                        }
                        environment_status.add(
                            timestamp(environment.get("createdOn")), **labels, type="created"
                        )
                        environment_status.add(
                            timestamp(environment.get("modifiedOn")), **labels, type="modified"
                        )
                        # timeToDeploy is reported in minutes
                        environment_status.add(
                            (environment.get("timeToDeploy") or 0) * 60,
                            **labels,
                            type="duration",
                        )

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot
