"""
FeedContext - owns every piece of the price feed layer

Replaces module-level singletons: one context holds the cache, limiters,
retry manager and one orchestrator per domain, and tears all of them down
in dispose().

Usage:
    async with FeedContext(FeedsConfig.from_env()) as feeds:
        crypto = await feeds.get(CRYPTO_DOMAIN_KEY)
        print(crypto.health_status, crypto.values["bitcoin"]["usd"])
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .cache.persistence import CachePersistence
from .cache.rate_limiter import MinIntervalSpacer, SlidingWindowRateLimiter
from .core.config import FeedsConfig
from .core.data_structures import FeedSnapshot, HealthStatus
from .core.retry import RetryManager
from .data_sources.base import FeedDomain
from .data_sources.crypto import create_crypto_domain
from .data_sources.http import JsonHttpClient
from .data_sources.metals import create_metals_domain
from .data_sources.orchestrator import FeedOrchestrator, Listener

logger = logging.getLogger(__name__)


class FeedContext:
    """Wires cache, rate limiting, retries and orchestrators together."""

    def __init__(
        self,
        config: Optional[FeedsConfig] = None,
        http_client: Optional[JsonHttpClient] = None,
        domains: Optional[Dict[str, FeedDomain]] = None,
        fetchers: Optional[Dict[str, Callable[[], Awaitable[Any]]]] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the context; the cache is restored from storage here.

        Args:
            config: Feed configuration (defaults to FeedsConfig())
            http_client: Shared JSON client
            domains: Domains keyed by domain key (defaults to crypto and metals)
            fetchers: Payload fetchers keyed by domain key, replacing HTTP calls
            clock: Epoch time source for cache entries and snapshots
            monotonic: Time source for rate limiting
            sleep: Async sleep used for backoff, spacing and scheduling
        """
        self.config = config or FeedsConfig()
        self._sleep = sleep
        self.http_client = http_client or JsonHttpClient()

        self.persistence = CachePersistence(
            storage_dir=self.config.storage_dir,
            storage_key=self.config.storage_key,
            validity_window=self.config.validity_window,
            capacity=self.config.cache_capacity,
            clock=clock,
        )
        self.cache = self.persistence.restore()

        self.spacer = MinIntervalSpacer(
            requests_per_minute=self.config.requests_per_minute,
            clock=monotonic,
            sleep=sleep,
        )
        self.window_limiter = SlidingWindowRateLimiter(clock=monotonic)
        self.retry_manager = RetryManager(sleep=sleep)

        if domains is None:
            domains = self._default_domains()
        fetchers = fetchers or {}

        self.orchestrators: Dict[str, FeedOrchestrator] = {
            key: FeedOrchestrator(
                domain,
                self.cache,
                retry_manager=self.retry_manager,
                http_client=self.http_client,
                spacer=self.spacer,
                window_limiter=self.window_limiter,
                persistence=self.persistence,
                persist_on_write=self.config.persist_on_write,
                fetcher=fetchers.get(key),
                clock=clock,
                sleep=sleep,
            )
            for key, domain in domains.items()
        }

        self._sweep_task: Optional[asyncio.Task] = None
        self._disposed = False

    def _default_domains(self) -> Dict[str, FeedDomain]:
        crypto = create_crypto_domain(
            settings=self.config.crypto,
            rate_limit=self.config.rate_limit_config("coingecko"),
        )
        metals = create_metals_domain(
            settings=self.config.metals,
            rate_limit=self.config.rate_limit_config("metals", use_spacer=False),
        )
        return {crypto.domain_key: crypto, metals.domain_key: metals}

    # ==================== Access ====================

    def orchestrator(self, domain_key: str) -> FeedOrchestrator:
        try:
            return self.orchestrators[domain_key]
        except KeyError:
            raise KeyError(
                f"Unknown domain {domain_key!r}, expected one of {sorted(self.orchestrators)}"
            ) from None

    async def get(self, domain_key: str) -> FeedSnapshot:
        """Cached snapshot for a domain, fetched on a miss."""
        return await self.orchestrator(domain_key).get()

    async def get_all(self) -> Dict[str, FeedSnapshot]:
        """Snapshots for every domain, fetched concurrently."""
        keys = list(self.orchestrators)
        snapshots = await asyncio.gather(*(self.get(key) for key in keys))
        return dict(zip(keys, snapshots))

    async def refetch(self, domain_key: Optional[str] = None, force: bool = False) -> Dict[str, FeedSnapshot]:
        """
        Run fetch cycles now.

        Args:
            domain_key: Single domain to refetch (default: all)
            force: Skip the cache check
        """
        keys = [domain_key] if domain_key else list(self.orchestrators)
        snapshots = await asyncio.gather(
            *(self.orchestrator(key).refetch(force=force) for key in keys)
        )
        return dict(zip(keys, snapshots))

    def get_health_status(self, domain_key: str) -> HealthStatus:
        return self.orchestrator(domain_key).get_health_status()

    def subscribe(self, domain_key: str, callback: Listener) -> None:
        self.orchestrator(domain_key).subscribe(callback)

    def unsubscribe(self, domain_key: str, callback: Listener) -> None:
        self.orchestrator(domain_key).unsubscribe(callback)

    def clear_cache(self) -> int:
        """Empty the cache and remove the stored snapshot."""
        removed = self.cache.clear()
        self.persistence.clear()
        return removed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.get_stats(),
            "retry": self.retry_manager.get_stats(),
            "spacer": self.spacer.get_stats(),
            "window": self.window_limiter.get_stats(),
            "health": {
                key: orchestrator.get_health_status().value
                for key, orchestrator in self.orchestrators.items()
            },
        }

    # ==================== Lifecycle ====================

    def start(self, domain_keys: Optional[List[str]] = None) -> None:
        """Start periodic refresh (every domain by default) and the expiry sweep."""
        for key in domain_keys or list(self.orchestrators):
            self.orchestrator(key).start()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self.config.sweep_interval)
            self.cache.sweep_expired()

    async def dispose(self) -> None:
        """Stop all tasks, persist the cache and release resources."""
        if self._disposed:
            return
        self._disposed = True

        tasks = []
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            tasks.append(self._sweep_task)
            self._sweep_task = None

        for orchestrator in self.orchestrators.values():
            tasks.extend(orchestrator.dispose())

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.window_limiter.dispose()
        self.spacer.reset()
        self.persistence.persist(self.cache)
        self.http_client.close()
        logger.info("Feed context disposed")

    async def __aenter__(self) -> "FeedContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
