from azure_devops_exporter.collectors.agentpool import AgentPoolCollector
from azure_devops_exporter.collectors.base import (
    CollectionError,
    CollectorSpec,
    MetricsCollector,
    PartialCollectionError,
)
from azure_devops_exporter.collectors.build import BuildCollector
from azure_devops_exporter.collectors.deployment import DeploymentCollector
from azure_devops_exporter.collectors.latest_build import LatestBuildCollector
from azure_devops_exporter.collectors.project import ProjectCollector
from azure_devops_exporter.collectors.pullrequest import PullRequestCollector
from azure_devops_exporter.collectors.query import QueryCollector
from azure_devops_exporter.collectors.release import ReleaseCollector
from azure_devops_exporter.collectors.repository import RepositoryCollector
from azure_devops_exporter.collectors.resource_usage import ResourceUsageCollector
from azure_devops_exporter.collectors.stats import StatsCollector
from azure_devops_exporter.discovery import ServiceDiscovery
from azure_devops_exporter.settings import ExporterSettings

# Registration order, name, cache file and interval setting of every collector
COLLECTORS: tuple[tuple[str, type[MetricsCollector], str, str], ...] = (
    ("Project", ProjectCollector, "project.json", "time_projects"),
    ("AgentPool", AgentPoolCollector, "agentpool.json", "time_agent_pools"),
    ("LatestBuild", LatestBuildCollector, "latestbuild.json", "time_build"),
    ("Repository", RepositoryCollector, "repository.json", "time_repository"),
    ("PullRequest", PullRequestCollector, "pullrequest.json", "time_pullrequest"),
    ("Build", BuildCollector, "build.json", "time_build"),
    ("Release", ReleaseCollector, "release.json", "time_release"),
    ("Deployment", DeploymentCollector, "deployment.json", "time_deployment"),
    ("Stats", StatsCollector, "stats.json", "time_stats"),
    ("ResourceUsage", ResourceUsageCollector, "resourceusage.json", "time_resource_usage"),
    ("Query", QueryCollector, "query.json", "time_query"),
)


def build_collectors(
    settings: ExporterSettings, discovery: ServiceDiscovery
) -> list[tuple[CollectorSpec, MetricsCollector]]:
    """Instantiate every collector with its spec, in registration order."""
    collectors = []
    for name, collector_class, cache_key, interval_field in COLLECTORS:
        spec = CollectorSpec(
            name=name,
            interval=settings.scrape.interval(interval_field),
            cache_key=cache_key,
        )
        collectors.append((spec, collector_class(discovery, settings)))
    return collectors


__all__ = [
    "COLLECTORS",
    "CollectionError",
    "CollectorSpec",
    "MetricsCollector",
    "PartialCollectionError",
    "build_collectors",
]
