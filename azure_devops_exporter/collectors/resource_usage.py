from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import MetricsCollector
from azure_devops_exporter.metrics import MetricSnapshot

# Numeric fields of the build resource usage document
BUILD_USAGE_FIELDS = (
    "distributedTaskAgents",
    "paidPrivateAgentSlots",
    "totalUsage",
    "xamlControllers",
)


class ResourceUsageCollector(MetricsCollector):
    """Organisation-wide build resource usage."""

    name = "ResourceUsage"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        usage = snapshot.family(
            "resourceusage_build", "Build resource usage", ("name",)
        )
        payload = client.get_build_resource_usage()
        for field in BUILD_USAGE_FIELDS:
            value = payload.get(field)
            if isinstance(value, (int, float)):
                usage.add(value, name=field)
        return snapshot
