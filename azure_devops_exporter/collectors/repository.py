"""Git repository metrics.

Commit and push counts cover the window since the previous tick, i.e. the
repository scrape interval.
"""

from datetime import timedelta

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.collectors.base import MetricsCollector, project_key, utcnow
from azure_devops_exporter.metrics import MetricSnapshot


class RepositoryCollector(MetricsCollector):
    name = "Repository"

    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        from_date = utcnow() - timedelta(
            seconds=self.settings.scrape.interval("time_repository")
        )

        snapshot = MetricSnapshot()
        info = snapshot.family(
            "repository_info",
            "Git repository",
            ("project_id", "repository_id", "repository_name", "default_branch"),
        )
        stats = snapshot.family(
            "repository_stats",
            "Git repository statistics",
            ("project_id", "repository_id", "type"),
        )
        commits = snapshot.family(
            "repository_commits",
            "Commits since the previous collection",
            ("project_id", "repository_id"),
        )
        pushes = snapshot.family(
            "repository_pushes",
            "Pushes since the previous collection",
            ("project_id", "repository_id"),
        )

        def fetch(project: dict) -> None:
            project_id = project.get("id")
            for repository in client.list_repositories(project_id):
                repository_id = repository.get("id")
                info.add(
                    1,
                    project_id=project_id,
                    repository_id=repository_id,
                    repository_name=repository.get("name"),
                    default_branch=repository.get("defaultBranch"),
                )
                stats.add(
                    repository.get("size") or 0,
                    project_id=project_id,
                    repository_id=repository_id,
                    type="size",
                )

                # Disabled repositories reject commit and push queries
                if repository.get("isDisabled"):
                    continue

                commits.add(
                    len(client.list_repository_commits(project_id, repository_id, from_date)),
                    project_id=project_id,
                    repository_id=repository_id,
                )
                pushes.add(
                    len(client.list_repository_pushes(project_id, repository_id, from_date)),
                    project_id=project_id,
                    repository_id=repository_id,
                )

        self.for_each(self.discovery.projects(), project_key, fetch, snapshot)
        return snapshot
