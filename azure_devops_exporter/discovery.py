"""Discovery of the projects and agent pools the collectors iterate over."""

import logging
import threading
import time
from collections.abc import Callable

from azure_devops_exporter.azure_devops_client import AzureDevopsClient, ClientError
from azure_devops_exporter.settings import ExporterSettings

logger = logging.getLogger(__name__)


class ServiceDiscovery:
    """Cached, filtered lists of projects and agent pools.

    Both lists are refreshed at most once per `refresh_interval`. When a
    refresh fails the previous list is kept; without a previous list the error
    propagates to the calling collector.
    """

    def __init__(
        self,
        client: AzureDevopsClient,
        settings: ExporterSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.refresh_interval = settings.service_discovery.refresh_interval
        self.filter_projects = set(settings.azure_devops.filter_projects)
        self.blacklist_projects = set(settings.azure_devops.blacklist_projects)
        self.filter_agentpool = set(settings.azure_devops.filter_agentpool)
        self._clock = clock
        # One refresh lock per kind, held only by the refreshing thread
        self._locks = {"projects": threading.Lock(), "agent pools": threading.Lock()}
        self._cache: dict[str, tuple[float, list[dict]]] = {}

    def projects(self) -> list[dict]:
        return self._get("projects", self._discover_projects)

    def agent_pools(self) -> list[dict]:
        return self._get("agent pools", self._discover_agent_pools)

    def _get(self, kind: str, discover: Callable[[], list[dict]]) -> list[dict]:
        cached = self._cache.get(kind)
        if cached is not None and self._clock() < cached[0]:
            return list(cached[1])

        lock = self._locks[kind]
        # While another thread refreshes, callers with a previous list use it
        if not lock.acquire(blocking=cached is None):
            return list(cached[1])
        try:
            now = self._clock()
            cached = self._cache.get(kind)
            if cached is not None and now < cached[0]:
                return list(cached[1])

            try:
                items = discover()
            except ClientError as e:
                if cached is None:
                    raise
                logger.warning(
                    "Discovery of %s failed, keeping %d previous entries: %s",
                    kind,
                    len(cached[1]),
                    e,
                )
                items = cached[1]

            self._cache[kind] = (now + self.refresh_interval, items)
            return list(items)
        finally:
            lock.release()

    def _discover_projects(self) -> list[dict]:
        projects = self.client.list_projects()
        if self.filter_projects:
            projects = [p for p in projects if _matches(p, self.filter_projects)]
        if self.blacklist_projects:
            projects = [p for p in projects if not _matches(p, self.blacklist_projects)]
        logger.info("Discovered %d projects", len(projects))
        return projects

    def _discover_agent_pools(self) -> list[dict]:
        pools = self.client.list_agent_pools()
        if self.filter_agentpool:
            pools = [p for p in pools if p.get("id") in self.filter_agentpool]
        logger.info("Discovered %d agent pools", len(pools))
        return pools


def _matches(project: dict, selectors: set[str]) -> bool:
    return project.get("id") in selectors or project.get("name") in selectors
