"""On-disk cache of the last successful snapshot of every collector.

Each collector owns one file below the cache directory. An entry records the
configuration fingerprint it was produced under; the scheduler ignores entries
whose fingerprint does not match the running configuration. The store itself
never expires entries.
"""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from azure_devops_exporter.metrics import MetricSnapshot

logger = logging.getLogger(__name__)


class CacheIOError(OSError):
    """Exception raised when a cache entry cannot be written."""


class CacheEntry(BaseModel):
    fingerprint: str
    collected_at: datetime
    snapshot: MetricSnapshot


class CacheStore:
    """Stores one JSON cache entry per key in `cache_dir`."""

    def __init__(self, cache_dir: Path):
        """Initialize the cache store.

        Args:
            cache_dir: Directory holding the cache files, created on first write
        """
        self.cache_dir = Path(cache_dir)

    def path_for(self, key: str) -> Path:
        path = self.cache_dir / key
        if path.parent != self.cache_dir:
            raise ValueError(f"Invalid cache key '{key}'")
        return path

    def load(self, key: str) -> CacheEntry | None:
        """Load the entry stored under `key`.

        Returns:
            The entry, or None when it is missing or cannot be read.
        """
        path = self.path_for(key)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No cache file '%s'", path)
            return None
        except OSError as e:
            logger.warning("Failed to read cache file '%s': %s", path, e)
            return None

        try:
            return CacheEntry.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid cache file '%s': %s", path, e)
            return None

    def store(self, key: str, entry: CacheEntry) -> None:
        """Atomically write `entry` under `key`.

        The entry is written to a temporary file in the same directory and
        renamed over the previous one, so readers never see a partial entry.

        Raises:
            CacheIOError: If the entry cannot be written
        """
        path = self.path_for(key)
        temp_path = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=self.cache_dir
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entry.model_dump_json())
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path is not None and os.path.exists(temp_path):
                os.remove(temp_path)
            raise CacheIOError(f"Failed to write cache file '{path}': {e}") from e
        logger.debug("Wrote cache file '%s'", path)
