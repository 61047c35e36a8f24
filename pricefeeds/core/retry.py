"""
Retry Manager

Executes an async operation under a bounded exponential-backoff policy.
The manager does not look at the kind of error: timeouts, malformed
responses and rate-limit signals are all retried the same way.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .errors import tag_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior (immutable)."""
    max_attempts: int = 4          # Includes the first try
    base_delay: float = 1.0        # Seconds
    max_delay: float = 8.0         # Seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.max_delay < 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    @classmethod
    def from_max_retries(cls, max_retries: int, **kwargs) -> "RetryPolicy":
        """Build a policy from a retry count (attempts = retries + 1)."""
        return cls(max_attempts=max_retries + 1, **kwargs)

    def compute_delay(self, attempt: int) -> float:
        """Delay after the failed attempt with 0-based index ``attempt``."""
        return min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)


class RetryManager:
    """
    Bounded retry executor with exponential backoff.

    Usage:
        manager = RetryManager(RetryPolicy(max_attempts=3))
        data = await manager.execute_with_retry(fetch, "CoinGecko price fetch")
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._stats = {
            "attempts": 0,
            "retries": 0,
            "successes": 0,
            "failures": 0,
        }

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "API call",
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or the policy is exhausted.

        Args:
            operation: Zero-argument coroutine factory
            context: Label used in logs and attached to the final error
            policy: Overrides the manager's default policy for this call

        Returns:
            The operation's result

        Raises:
            FeedError: The last error, tagged with ``context``
        """
        policy = policy or self.policy
        last_error: Optional[BaseException] = None

        for attempt in range(policy.max_attempts):
            self._stats["attempts"] += 1
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e

                if attempt == policy.max_attempts - 1:
                    break

                delay = policy.compute_delay(attempt)
                self._stats["retries"] += 1
                logger.warning(
                    f"{context} failed (attempt {attempt + 1}/{policy.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(f"{context} succeeded after {attempt} retries")
            self._stats["successes"] += 1
            return result

        self._stats["failures"] += 1
        logger.error(f"{context} failed after {policy.max_attempts} attempts: {last_error}")

        tagged = tag_error(last_error, context)
        if tagged is last_error:
            raise tagged
        raise tagged from last_error

    def get_stats(self) -> Dict[str, int]:
        """Get retry statistics."""
        return dict(self._stats)
