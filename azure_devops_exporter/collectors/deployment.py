"""Deployments of every release definition."""

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import (
    MetricsCollector,
    display_name,
    duration,
    project_key,
    timestamp,
)
from azure_devops_exporter.metrics import MetricSnapshot


class DeploymentCollector(MetricsCollector):
    name = "Deployment"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        info = snapshot.family(
            "deployment_info",
            "Release deployment",
            (
                "project_id",
                "deployment_id",
                "release_id",
                "release_definition_id",
                "release_name",
                "environment_id",
                "environment_name",
                "status",
                "operation_status",
                "reason",
                "attempt",
                "requested_by",
            ),
        )
        status = snapshot.family(
            "deployment_status",
            "Deployment timestamps and duration",
            ("project_id", "deployment_id", "type"),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for definition in client.list_release_definitions(project_id):
                definition_id = definition.get("id")
                for deployment in client.list_deployments(project_id, definition_id):
                    deployment_id = deployment.get("id")
                    release = deployment.get("release") or {}
                    environment = deployment.get("releaseEnvironment") or {}
                    info.add(
                        1,
                        project_id=project_id,
                        deployment_id=deployment_id,
                        release_id=release.get("id"),
                        release_definition_id=definition_id,
                        release_name=release.get("name"),
                        environment_id=environment.get("id"),
                        environment_name=environment.get("name"),
                        status=deployment.get("deploymentStatus"),
                        operation_status=deployment.get("operationStatus"),
                        reason=deployment.get("reason"),
                        attempt=deployment.get("attempt"),
                        requested_by=display_name(deployment.get("requestedBy")),
                    )

                    labels = {"project_id": project_id, "deployment_id": deployment_id}
                    status.add(timestamp(deployment.get("queuedOn")), **labels, type="queued")
                    status.add(timestamp(deployment.get("startedOn")), **labels, type="started")
                    status.add(
                        timestamp(deployment.get("completedOn")), **labels, type="finished"
                    )
                    elapsed = duration(deployment.get("startedOn"), deployment.get("completedOn"))
                    if elapsed is not None:
                        status.add(elapsed, **labels, type="duration")

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot
