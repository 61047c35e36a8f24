"""
Cache Module for price feeds

Provides a bounded TTL cache for API data, rate limiting for external API
calls, and snapshot persistence for offline use.
"""

from .cache_manager import CacheManager, CacheEntry, CachePriority, DEFAULT_TTL
from .rate_limiter import (
    MinIntervalSpacer,
    SlidingWindowRateLimiter,
    RateLimitConfig,
    DEFAULT_RATE_LIMITS,
)
from .persistence import CachePersistence

__all__ = [
    # Cache
    "CacheManager",
    "CacheEntry",
    "CachePriority",
    "DEFAULT_TTL",
    # Rate Limiting
    "MinIntervalSpacer",
    "SlidingWindowRateLimiter",
    "RateLimitConfig",
    "DEFAULT_RATE_LIMITS",
    # Persistence
    "CachePersistence",
]
