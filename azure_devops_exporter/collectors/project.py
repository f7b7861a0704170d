from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import MetricsCollector
from azure_devops_exporter.metrics import MetricSnapshot


class ProjectCollector(MetricsCollector):
    """One info series per discovered project."""

    name = "Project"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        info = snapshot.family(
            "project_info",
            "Azure DevOps project",
            ("project_id", "project_name", "project_state", "project_visibility"),
        )
        for project in self.discovery.projects():
            info.add(
                1,
                project_id=project.get("id"),
                project_name=project.get("name"),
                project_state=project.get("state"),
                project_visibility=project.get("visibility"),
            )
        return snapshot
