"""
Cache Manager for price feeds

Provides an in-memory key/value cache with per-entry TTL, priority-derived
default TTL tiers and LRU-biased capacity eviction.

Usage:
    from pricefeeds.cache import CacheManager, CachePriority

    cache = CacheManager(capacity=100)

    # Store data with an explicit TTL, or let the priority pick one
    cache.put("crypto_prices", data, ttl_seconds=90)
    cache.put("metals_prices", data, priority=CachePriority.LOW)

    # Retrieve data (None if missing or expired)
    data = cache.get("crypto_prices")
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Share of entries removed by one eviction pass
EVICTION_FRACTION = 0.2

DEFAULT_CAPACITY = 100


class CachePriority(str, Enum):
    """Entry priority; higher priority data goes stale sooner."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Default TTL values per priority (in seconds)
DEFAULT_TTL = {
    CachePriority.LOW: 30 * 60,     # 30 minutes
    CachePriority.MEDIUM: 15 * 60,  # 15 minutes
    CachePriority.HIGH: 5 * 60,     # 5 minutes
}


@dataclass
class CacheEntry:
    """A cached entry with metadata"""
    key: str
    value: Any
    created_at: float
    ttl_seconds: float
    priority: CachePriority = CachePriority.MEDIUM
    access_count: int = 0
    last_accessed: float = 0

    def is_expired(self, now: float) -> bool:
        """An entry is expired once its full TTL has elapsed."""
        return now - self.created_at >= self.ttl_seconds

    def age_seconds(self, now: float) -> float:
        return now - self.created_at

    def remaining_ttl(self, now: float) -> float:
        return max(0.0, (self.created_at + self.ttl_seconds) - now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
            "priority": self.priority.value,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            created_at=float(data["created_at"]),
            ttl_seconds=float(data["ttl_seconds"]),
            priority=CachePriority(data.get("priority", CachePriority.MEDIUM.value)),
            access_count=int(data.get("access_count", 0)),
            last_accessed=float(data.get("last_accessed", data["created_at"])),
        )


class CacheManager:
    """
    In-memory cache with TTL support and bounded size.

    Features:
    - TTL-based expiration, never serving an expired entry
    - Priority tiers for default TTLs
    - Evicts the least recently accessed 20% when full
    - Cache statistics

    All access happens on one event loop, so no locking is done here.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache manager.

        Args:
            capacity: Maximum number of entries
            clock: Time source returning epoch seconds
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions": 0,
            "expirations": 0,
        }

    def _resolve_ttl(self, ttl_seconds: Optional[float], priority: CachePriority) -> float:
        if ttl_seconds is None:
            return float(DEFAULT_TTL[priority])
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        return float(ttl_seconds)

    def _evict(self) -> int:
        """Remove the least recently accessed share of entries."""
        by_access = sorted(self._cache.values(), key=lambda e: e.last_accessed)
        to_remove = max(1, math.floor(len(by_access) * EVICTION_FRACTION))

        for entry in by_access[:to_remove]:
            del self._cache[entry.key]

        self._stats["evictions"] += to_remove
        logger.debug(f"Evicted {to_remove} cache entries (capacity {self.capacity})")
        return to_remove

    def put(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> None:
        """
        Set a value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: TTL in seconds (uses the priority default if not provided)
            priority: Priority tier
        """
        priority = CachePriority(priority)
        ttl = self._resolve_ttl(ttl_seconds, priority)

        if key not in self._cache and len(self._cache) >= self.capacity:
            self._evict()

        now = self._clock()
        self._cache[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            ttl_seconds=ttl,
            priority=priority,
            access_count=0,
            last_accessed=now,
        )
        self._stats["sets"] += 1

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from cache.

        Returns:
            Cached value or None if not found/expired
        """
        entry = self._cache.get(key)

        if entry is None:
            self._stats["misses"] += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            del self._cache[key]
            self._stats["misses"] += 1
            self._stats["expirations"] += 1
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._stats["hits"] += 1
        return entry.value

    def get_with_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get value with metadata (age, remaining TTL, etc.)

        Returns:
            Dict with 'value', 'age_seconds', 'remaining_ttl', 'access_count',
            'priority' or None if not found
        """
        value = self.get(key)
        if value is None and key not in self._cache:
            return None

        entry = self._cache[key]
        now = self._clock()
        return {
            "value": value,
            "age_seconds": round(entry.age_seconds(now), 1),
            "remaining_ttl": round(entry.remaining_ttl(now), 1),
            "access_count": entry.access_count,
            "priority": entry.priority.value,
        }

    def update(
        self,
        key: str,
        updater: Callable[[Optional[Any]], Any],
        priority: CachePriority = CachePriority.MEDIUM,
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """Read-modify-write; ``updater`` receives the current value or None."""
        updated = updater(self.get(key))
        self.put(key, updated, ttl_seconds=ttl_seconds, priority=priority)
        return updated

    def delete(self, key: str) -> bool:
        """
        Delete a value from cache.

        Returns:
            True if key was found and deleted
        """
        return self._cache.pop(key, None) is not None

    def clear(self) -> int:
        """
        Clear entire cache.

        Returns:
            Number of entries cleared
        """
        count = len(self._cache)
        self._cache.clear()
        return count

    def sweep_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]

        for key in expired:
            del self._cache[key]

        self._stats["expirations"] += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def size(self) -> int:
        return len(self._cache)

    def keys(self) -> List[str]:
        return list(self._cache.keys())

    def entries(self) -> List[CacheEntry]:
        """Snapshot of all entries, expired or not."""
        return list(self._cache.values())

    def load_entries(self, entries: Iterable[CacheEntry]) -> int:
        """
        Insert entries as-is, keeping their own timestamps and TTLs.

        Entries beyond capacity are dropped, least recently accessed first.

        Returns:
            Number of entries loaded
        """
        loaded = sorted(entries, key=lambda e: e.last_accessed, reverse=True)
        loaded = loaded[:self.capacity]

        self._cache.clear()
        for entry in reversed(loaded):
            self._cache[entry.key] = entry
        return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (
            self._stats["hits"] / total_requests * 100
            if total_requests > 0
            else 0
        )

        return {
            "entries": len(self._cache),
            "capacity": self.capacity,
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "hit_rate_pct": round(hit_rate, 1),
            "sets": self._stats["sets"],
            "evictions": self._stats["evictions"],
            "expirations": self._stats["expirations"],
        }
