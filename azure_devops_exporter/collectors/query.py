from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import MetricsCollector
from azure_devops_exporter.metrics import MetricSnapshot


class QueryCollector(MetricsCollector):
    """Number of work items returned by each configured stored query."""

    name = "Query"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        snapshot = MetricSnapshot()
        result = snapshot.family(
            "query_result",
            "Number of work items matched by a stored query",
            ("query_id", "project_id"),
        )

        def fetch(query: tuple[str, str]) -> None:
            query_id, project_id = query
            payload = client.run_query(project_id, query_id)
            items = payload.get("workItems")
            if items is None:
                items = payload.get("workItemRelations") or []
            result.add(len(items), query_id=query_id, project_id=project_id)

        self.for_each(
            self.settings.azure_devops.queries(),
            lambda query: "@".join(query),
            fetch,
            snapshot,
        )
        return snapshot
