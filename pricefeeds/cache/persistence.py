"""
Cache persistence for offline use.

Serializes a CacheManager snapshot to a JSON file and restores it on cold
start, as long as the snapshot is younger than the validity window.

Snapshot document:
    {
        "schema_version": 1,
        "timestamp": 1760000000.0,
        "checksum": "<sha256 of the canonical entries JSON>",
        "entries": [CacheEntry.to_dict(), ...]
    }
"""

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..core.errors import PersistenceError
from .cache_manager import DEFAULT_CAPACITY, CacheEntry, CacheManager

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_STORAGE_KEY = "pricefeeds_cache"
DEFAULT_VALIDITY_WINDOW = 3600  # 1 hour


def _checksum(entries: List[Dict[str, Any]]) -> str:
    canonical = json.dumps(entries, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


class CachePersistence:
    """Durable local storage for cache snapshots."""

    def __init__(
        self,
        storage_dir: str = "./data/cache",
        storage_key: str = DEFAULT_STORAGE_KEY,
        validity_window: float = DEFAULT_VALIDITY_WINDOW,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize persistence adapter.

        Args:
            storage_dir: Directory holding the snapshot file
            storage_key: Snapshot file name (without extension)
            validity_window: Max snapshot age in seconds
            capacity: Capacity of restored stores
            clock: Time source returning epoch seconds
        """
        self.base_dir = Path(storage_dir)
        self.snapshot_file = self.base_dir / f"{storage_key}.json"
        self.validity_window = validity_window
        self.capacity = capacity
        self._clock = clock

    def persist(self, cache: CacheManager) -> bool:
        """
        Write the cache to storage, replacing any prior snapshot.

        Returns:
            True if the snapshot was written
        """
        try:
            self._write(cache)
            return True
        except PersistenceError as e:
            logger.warning(f"Failed to persist cache: {e}")
            return False

    def _write(self, cache: CacheManager) -> None:
        entries = [entry.to_dict() for entry in cache.entries()]

        try:
            document = json.dumps({
                "schema_version": SCHEMA_VERSION,
                "timestamp": self._clock(),
                "checksum": _checksum(entries),
                "entries": entries,
            })
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cache snapshot is not serializable: {e}") from e

        tmp_file = self.snapshot_file.with_suffix(".tmp")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(document, encoding="utf-8")
            os.replace(tmp_file, self.snapshot_file)
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.snapshot_file}: {e}") from e

        logger.debug(f"Persisted {len(entries)} cache entries to {self.snapshot_file}")

    def restore(self) -> CacheManager:
        """
        Rebuild a cache from the stored snapshot.

        Returns:
            A CacheManager holding the snapshot's entries, or an empty one if
            the snapshot is missing, invalid, or older than the validity window
        """
        cache = CacheManager(capacity=self.capacity, clock=self._clock)

        try:
            entries = self._read()
        except PersistenceError as e:
            logger.warning(f"Ignoring stored cache snapshot: {e}")
            return cache

        if entries:
            loaded = cache.load_entries(entries)
            logger.info(f"Restored {loaded} cache entries from {self.snapshot_file}")
        return cache

    def _read(self) -> Optional[List[CacheEntry]]:
        if not self.snapshot_file.exists():
            return None

        try:
            document = json.loads(self.snapshot_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.snapshot_file}: {e}") from e

        if not isinstance(document, dict):
            raise PersistenceError("Snapshot is not a JSON object")

        version = document.get("schema_version")
        if version != SCHEMA_VERSION:
            raise PersistenceError(f"Unsupported snapshot schema version: {version}")

        timestamp = document.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            raise PersistenceError("Snapshot timestamp missing")

        age = self._clock() - timestamp
        if age >= self.validity_window:
            logger.info(f"Stored cache snapshot is {age:.0f}s old, not restoring")
            return None

        raw_entries = document.get("entries")
        if not isinstance(raw_entries, list):
            raise PersistenceError("Snapshot entries missing")

        if _checksum(raw_entries) != document.get("checksum"):
            raise PersistenceError("Snapshot checksum mismatch")

        try:
            return [CacheEntry.from_dict(raw) for raw in raw_entries]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed snapshot entry: {e}") from e

    def clear(self) -> bool:
        """
        Delete the stored snapshot.

        Returns:
            True if a snapshot was removed
        """
        try:
            self.snapshot_file.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove {self.snapshot_file}: {e}")
            return False
