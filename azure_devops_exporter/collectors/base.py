"""
Base collector interface.

A collector turns Azure DevOps resources into one MetricSnapshot per tick.
Concurrency, retries and authentication are the client's job; a collector
only decides what to fetch and how to map it.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TypeVar

from azure_devops_exporter.azure_devops_client import AzureDevopsClient, ClientError
from azure_devops_exporter.discovery import ServiceDiscovery
from azure_devops_exporter.metrics import MetricSnapshot
from azure_devops_exporter.settings import ExporterSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FRACTION = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class CollectorSpec:
    """Name, tick interval (seconds) and cache file of a registered collector."""

    name: str
    interval: float
    cache_key: str

    @property
    def enabled(self) -> bool:
        return self.interval > 0


class PartialCollectionError(Exception):
    """Raised when some sub-fetches of a collector failed.

    Carries the snapshot built from everything that did succeed; the runtime
    publishes it like a regular result.
    """

    def __init__(self, snapshot: MetricSnapshot, failures: dict[str, Exception]):
        super().__init__(
            f"{len(failures)} sub-fetch(es) failed: "
            + ", ".join(f"{key} ({error})" for key, error in failures.items())
        )
        self.snapshot = snapshot
        self.failures = failures


class CollectionError(Exception):
    """Raised when every sub-fetch of a collector failed.

    Nothing usable was fetched, so the previous snapshot must stay published.
    """

    def __init__(self, failures: dict[str, Exception]):
        super().__init__(
            f"all {len(failures)} sub-fetch(es) failed: "
            + ", ".join(f"{key} ({error})" for key, error in failures.items())
        )
        self.failures = failures


class MetricsCollector(ABC):
    """Interface for all metric families."""

    name: str

    def __init__(self, discovery: ServiceDiscovery, settings: ExporterSettings):
        self.discovery = discovery
        self.settings = settings

    @abstractmethod
    def collect(self, client: AzureDevopsClient) -> MetricSnapshot:
        """Fetch and map one complete snapshot.

        Raises:
            PartialCollectionError: If only part of the data could be fetched
            CollectionError: If none of the data could be fetched
        """
        ...

    def for_each(
        self,
        items: Iterable[T],
        key: Callable[[T], str],
        fetch: Callable[[T], None],
        snapshot: MetricSnapshot,
    ) -> None:
        """Run `fetch` for every item, collecting per-item client failures.

        Raises:
            CollectionError: If every item failed
            PartialCollectionError: If some items failed, once all items ran
        """
        failures: dict[str, Exception] = {}
        attempted = 0
        for item in items:
            attempted += 1
            try:
                fetch(item)
            except ClientError as e:
                logger.debug("%s: fetch for %s failed: %s", self.name, key(item), e)
                failures[key(item)] = e
        if failures and len(failures) == attempted:
            raise CollectionError(failures)
        if failures:
            raise PartialCollectionError(snapshot, failures)


def project_key(project: dict) -> str:
    return project.get("name") or project.get("id", "")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_time(value: str | None) -> datetime | None:
    """Parse a REST API timestamp (ISO 8601, possibly with 7 fractional digits)."""
    if not value:
        return None
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp(value: str | None) -> float:
    """Unix timestamp of a REST API time, 0 when absent."""
    parsed = parse_time(value)
    return parsed.timestamp() if parsed else 0.0


def duration(start: str | None, end: str | None) -> float | None:
    """Seconds between two REST API times, None unless both are set."""
    started, finished = parse_time(start), parse_time(end)
    if started is None or finished is None:
        return None
    return (finished - started).total_seconds()


def display_name(identity: dict | None) -> str:
    if not identity:
        return ""
    return identity.get("displayName") or identity.get("uniqueName") or ""


def web_url(resource: dict) -> str | None:
    return ((resource.get("_links") or {}).get("web") or {}).get("href")
