"""Run every collector on its own schedule and publish its snapshots.

Each registered collector gets a ticker thread that fires at start and then
every `interval` seconds. A tick runs in its own worker thread; when the
previous tick of the same collector is still running, the due tick is skipped
rather than queued. Successful (and partial) results replace the collector's
slot in the registry and are written to the cache; failed ticks leave the
last good result in place.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum

from prometheus_client import CollectorRegistry, Counter, Gauge

from azure_devops_exporter.azure_devops_client import AzureDevopsClient
from azure_devops_exporter.cache_store import CacheEntry, CacheIOError, CacheStore
from azure_devops_exporter.collectors.base import (
    CollectionError,
    CollectorSpec,
    MetricsCollector,
    PartialCollectionError,
)
from azure_devops_exporter.metrics import MetricSnapshot
from azure_devops_exporter.registry import SnapshotRegistry

logger = logging.getLogger(__name__)


class CollectorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class TickResult(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class RuntimeMetrics:
    """Self-observability of the collector runtime."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.ticks = Counter(
            "azure_devops_exporter_collector_ticks",
            "Collector ticks by result",
            ["collector", "result"],
            registry=registry,
        )
        self.last_success = Gauge(
            "azure_devops_exporter_collector_last_success_timestamp_seconds",
            "Unix time of the last successful collector tick",
            ["collector"],
            registry=registry,
        )
        self.duration = Gauge(
            "azure_devops_exporter_collector_duration_seconds",
            "Duration of the last collector tick",
            ["collector"],
            registry=registry,
        )


class ScheduledCollector:
    """A registered collector together with its tick state."""

    def __init__(
        self,
        spec: CollectorSpec,
        collector: MetricsCollector,
        client: AzureDevopsClient,
        registry: SnapshotRegistry,
        fingerprint: str,
        cache_store: CacheStore | None,
        metrics: RuntimeMetrics,
    ):
        self.spec = spec
        self.collector = collector
        self.client = client
        self.registry = registry
        self.fingerprint = fingerprint
        self.cache_store = cache_store
        self.metrics = metrics

        self.state = CollectorState.IDLE
        self.last_result: TickResult | None = None
        self.last_success: datetime | None = None
        self._tick_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def running(self) -> bool:
        return self._tick_lock.locked()

    def skip(self) -> TickResult:
        logger.warning(
            "Collector %s is still running, skipping this tick", self.name
        )
        self.metrics.ticks.labels(self.name, TickResult.SKIPPED.value).inc()
        return TickResult.SKIPPED

    def tick(self) -> TickResult:
        """Run one tick unless one is already running."""
        if not self._tick_lock.acquire(blocking=False):
            return self.skip()
        try:
            self.state = CollectorState.RUNNING
            result = self._run()
            self.last_result = result
            self.metrics.ticks.labels(self.name, result.value).inc()
            return result
        finally:
            self.state = CollectorState.IDLE
            self._tick_lock.release()

    def _run(self) -> TickResult:
        logger.info("Starting collection for %s", self.name)
        started = time.monotonic()
        try:
            snapshot = self.collector.collect(self.client)
            result = TickResult.SUCCESS
        except PartialCollectionError as e:
            logger.warning("Collection for %s was incomplete: %s", self.name, e)
            snapshot = e.snapshot
            result = TickResult.PARTIAL
        except CollectionError as e:
            logger.error(
                "Collection for %s failed, keeping previous metrics: %s", self.name, e
            )
            self.metrics.duration.labels(self.name).set(time.monotonic() - started)
            return TickResult.FAILED
        except Exception as e:
            logger.error(
                "Collection for %s failed, keeping previous metrics: %s",
                self.name,
                e,
                exc_info=True,
            )
            self.metrics.duration.labels(self.name).set(time.monotonic() - started)
            return TickResult.FAILED

        collected_at = datetime.now(timezone.utc)
        duration = time.monotonic() - started

        self.registry.publish(self.name, snapshot)
        self._persist(snapshot, collected_at)

        self.last_success = collected_at
        self.metrics.duration.labels(self.name).set(duration)
        self.metrics.last_success.labels(self.name).set(collected_at.timestamp())
        logger.info(
            "Collection for %s completed in %.2f seconds (%d samples)",
            self.name,
            duration,
            snapshot.sample_count(),
        )
        return result

    def _persist(self, snapshot: MetricSnapshot, collected_at: datetime) -> None:
        if self.cache_store is None:
            return
        entry = CacheEntry(
            fingerprint=self.fingerprint, collected_at=collected_at, snapshot=snapshot
        )
        try:
            self.cache_store.store(self.spec.cache_key, entry)
        except CacheIOError as e:
            logger.warning("Could not cache metrics of %s: %s", self.name, e)

    def restore(self) -> bool:
        """Publish the cached snapshot if it was produced by the same configuration."""
        if self.cache_store is None:
            return False

        entry = self.cache_store.load(self.spec.cache_key)
        if entry is None:
            logger.info("No cached metrics for %s, starting cold", self.name)
            return False
        if entry.fingerprint != self.fingerprint:
            logger.info(
                "Cached metrics for %s were produced by a different configuration, starting cold",
                self.name,
            )
            return False

        self.registry.publish(self.name, entry.snapshot)
        logger.info(
            "Restored %d cached samples for %s (collected at %s)",
            entry.snapshot.sample_count(),
            self.name,
            entry.collected_at.isoformat(),
        )
        return True


class CollectorRuntime:
    """Owns the schedules of all registered collectors.

    The set of collectors is fixed once `start()` is called.
    """

    shutdown_event: threading.Event

    def __init__(
        self,
        client: AzureDevopsClient,
        registry: SnapshotRegistry,
        fingerprint: str,
        cache_store: CacheStore | None = None,
        metrics_registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            client: API client shared by all collectors
            registry: Registry the snapshots are published to
            fingerprint: Fingerprint of the running configuration
            cache_store: Store for the last good snapshots; None disables caching
            metrics_registry: Prometheus registry for the runtime's own metrics
        """
        self.client = client
        self.registry = registry
        self.fingerprint = fingerprint
        self.cache_store = cache_store
        self.metrics = RuntimeMetrics(metrics_registry)

        self.collectors: dict[str, ScheduledCollector] = {}
        self.shutdown_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False

    def register(
        self, spec: CollectorSpec, collector: MetricsCollector
    ) -> ScheduledCollector | None:
        """Register a collector and pre-warm the registry from its cache.

        Disabled collectors (interval <= 0) are not registered at all.
        """
        if not spec.enabled:
            logger.info("Collector %s disabled", spec.name)
            return None
        if spec.name in self.collectors:
            raise ValueError(f"Collector {spec.name} is already registered")
        if self._started:
            raise RuntimeError("Cannot register collectors after the runtime started")

        scheduled = ScheduledCollector(
            spec=spec,
            collector=collector,
            client=self.client,
            registry=self.registry,
            fingerprint=self.fingerprint,
            cache_store=self.cache_store,
            metrics=self.metrics,
        )
        self.collectors[spec.name] = scheduled
        scheduled.restore()
        logger.info(
            "Registered collector %s (interval: %d seconds)", spec.name, spec.interval
        )
        return scheduled

    def start(self) -> None:
        """Start one ticker thread per registered collector."""
        self._started = True
        for scheduled in self.collectors.values():
            thread = threading.Thread(
                target=self._run_schedule,
                args=(scheduled,),
                name=f"collector-{scheduled.name}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Started %d collectors", len(self._threads))

    def _run_schedule(self, scheduled: ScheduledCollector) -> None:
        interval = scheduled.spec.interval
        next_tick = time.monotonic()

        while not self.shutdown_event.is_set():
            self._dispatch(scheduled)

            # Keep a fixed cadence; slots missed while the host was busy are dropped
            next_tick += interval
            now = time.monotonic()
            while next_tick <= now:
                next_tick += interval

            if self.shutdown_event.wait(next_tick - now):
                break

    def _dispatch(self, scheduled: ScheduledCollector) -> None:
        if scheduled.running:
            scheduled.skip()
            return
        threading.Thread(
            target=scheduled.tick, name=f"tick-{scheduled.name}", daemon=True
        ).start()

    def shutdown(self) -> None:
        self.shutdown_event.set()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
