"""
Rate Limiter for price feeds

Two cooperating mechanisms protect external price APIs:
- MinIntervalSpacer: global minimum spacing between calls
- SlidingWindowRateLimiter: per-identifier request count over a trailing window

Usage:
    from pricefeeds.cache import MinIntervalSpacer, SlidingWindowRateLimiter

    spacer = MinIntervalSpacer(requests_per_minute=30)
    await spacer.wait_if_needed()

    limiter = SlidingWindowRateLimiter()
    if limiter.can_make_request("coingecko", max_requests=50, window_seconds=60):
        api_call()
    else:
        handle_rate_limit()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a provider's rate limits."""
    requests_per_minute: float = 30.0       # Global spacing rate
    max_requests_per_identifier: int = 50   # Sliding window budget
    window_seconds: float = 60.0            # Sliding window length
    use_spacer: bool = True
    use_window: bool = True
    name: str = "default"                   # Provider name for logging

    def __post_init__(self):
        if self.requests_per_minute <= 0:
            raise ValueError(
                f"requests_per_minute must be > 0, got {self.requests_per_minute}"
            )
        if self.max_requests_per_identifier < 1:
            raise ValueError(
                "max_requests_per_identifier must be >= 1, "
                f"got {self.max_requests_per_identifier}"
            )
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {self.window_seconds}")


# Default rate limits for different providers
DEFAULT_RATE_LIMITS = {
    "coingecko": RateLimitConfig(
        requests_per_minute=30.0,  # Free tier allows ~30/min
        max_requests_per_identifier=50,
        window_seconds=60.0,
        name="coingecko"
    ),
    "metals": RateLimitConfig(
        requests_per_minute=30.0,
        max_requests_per_identifier=50,
        window_seconds=60.0,
        use_spacer=False,  # Metals feed is polled slowly; window gate only
        name="metals"
    ),
}


class MinIntervalSpacer:
    """
    Global spacer enforcing ``60 / requests_per_minute`` seconds between calls.

    Every caller that returns from ``wait_if_needed`` counts as a call.
    """

    def __init__(
        self,
        requests_per_minute: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be > 0, got {requests_per_minute}")

        self.min_interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None

        # Statistics
        self._stats = {
            "calls": 0,
            "waited": 0,
            "total_wait_time": 0.0,
        }

    async def wait_if_needed(self) -> float:
        """
        Sleep until the minimum interval since the last call has elapsed.

        Returns:
            Seconds waited
        """
        now = self._clock()
        waited = 0.0

        if self._last_call is not None:
            elapsed = now - self._last_call
            if elapsed < self.min_interval:
                waited = self.min_interval - elapsed

        # Reserve the slot before sleeping so concurrent callers queue behind it
        self._last_call = now + waited
        self._stats["calls"] += 1

        if waited > 0:
            logger.debug(f"Rate limit protection: waiting {waited:.3f}s")
            self._stats["waited"] += 1
            self._stats["total_wait_time"] += waited
            await self._sleep(waited)
        return waited

    def reset(self) -> None:
        self._last_call = None

    def get_stats(self) -> Dict[str, Any]:
        """Get spacer statistics."""
        avg_wait = (
            self._stats["total_wait_time"] / self._stats["waited"]
            if self._stats["waited"] > 0
            else 0
        )

        return {
            "min_interval_seconds": round(self.min_interval, 3),
            "calls": self._stats["calls"],
            "waited": self._stats["waited"],
            "avg_wait_seconds": round(avg_wait, 3),
        }


class SlidingWindowRateLimiter:
    """
    Per-identifier request counter over a trailing time window.

    A rejected request is not recorded, so it does not extend the window.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._calls: Dict[str, List[float]] = {}
        self._stats = {
            "allowed": 0,
            "rejected": 0,
        }

    def can_make_request(
        self,
        identifier: str,
        max_requests: int = 10,
        window_seconds: float = 60.0,
    ) -> bool:
        """
        Record a request for ``identifier`` if its window has room.

        Args:
            identifier: Caller or provider identifier
            max_requests: Requests allowed within the window
            window_seconds: Trailing window length

        Returns:
            True if the request is allowed (and recorded)
        """
        now = self._clock()
        recent = [t for t in self._calls.get(identifier, []) if now - t < window_seconds]

        if len(recent) >= max_requests:
            self._calls[identifier] = recent
            self._stats["rejected"] += 1
            logger.warning(
                f"rate_limit_exceeded for {identifier}: {len(recent)}/{max_requests} "
                f"in {window_seconds}s"
            )
            return False

        recent.append(now)
        self._calls[identifier] = recent
        self._stats["allowed"] += 1
        return True

    def clear_limits(self, identifier: Optional[str] = None) -> None:
        """Clear recorded calls for one identifier, or for all of them."""
        if identifier:
            self._calls.pop(identifier, None)
        else:
            self._calls.clear()

    def dispose(self) -> None:
        self.clear_limits()

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "identifiers": len(self._calls),
            "allowed": self._stats["allowed"],
            "rejected": self._stats["rejected"],
        }
