"""
Fetch Orchestrator

One instance per data domain. A fetch cycle runs:

1. Cache check (a hit returns immediately, no network)
2. Rate gate (per-identifier window, then global spacing)
3. Retried fetch through the RetryManager
4. Per-key reconciliation against the fallback table
5. Health derivation from the success ratio
6. Cache write
7. Periodic re-run every ``refresh_interval`` seconds while started

Callers never see an exception: on total failure they get the last unexpired
cached snapshot or the fallback table, with health forced to offline.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..cache.cache_manager import CacheManager
from ..cache.persistence import CachePersistence
from ..cache.rate_limiter import MinIntervalSpacer, SlidingWindowRateLimiter
from ..core.data_structures import (
    Err,
    FeedSnapshot,
    HealthStatus,
    Ok,
    PartialOk,
    ReconcileResult,
)
from ..core.errors import FeedError, RateLimitSignal
from ..core.retry import RetryManager
from .base import FeedDomain, reconcile
from .http import JsonHttpClient

logger = logging.getLogger(__name__)

Listener = Callable[[FeedSnapshot], None]


class FeedOrchestrator:
    """
    Cache-first, rate-limited, retried access to one price domain.

    Usage:
        orchestrator = FeedOrchestrator(create_crypto_domain(), cache, RetryManager())
        snapshot = await orchestrator.get()
        orchestrator.start()        # periodic refresh
        await orchestrator.refetch(force=True)
        orchestrator.dispose()
    """

    def __init__(
        self,
        domain: FeedDomain,
        cache: CacheManager,
        retry_manager: Optional[RetryManager] = None,
        http_client: Optional[JsonHttpClient] = None,
        spacer: Optional[MinIntervalSpacer] = None,
        window_limiter: Optional[SlidingWindowRateLimiter] = None,
        persistence: Optional[CachePersistence] = None,
        persist_on_write: bool = False,
        fetcher: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            domain: Domain definition
            cache: Shared cache store
            retry_manager: Retry executor (a default one is created if omitted)
            http_client: JSON client used by the default fetcher
            spacer: Global spacing gate, used when the domain enables it
            window_limiter: Per-identifier window gate, used when the domain enables it
            persistence: Snapshot storage, flushed after cache writes if persist_on_write
            fetcher: Replaces the HTTP call; must return the decoded payload
            clock: Time source returning epoch seconds
            sleep: Async sleep used between scheduled cycles
        """
        self.domain = domain
        self.cache = cache
        self.retry_manager = retry_manager or RetryManager()
        self.retry_policy = domain.settings.retry_policy()
        self.spacer = spacer
        self.window_limiter = window_limiter
        self.persistence = persistence
        self.persist_on_write = persist_on_write
        self._http_client = http_client
        self._fetcher = fetcher
        self._clock = clock
        self._sleep = sleep

        self.last_updated: Optional[float] = None
        self.last_snapshot: Optional[FeedSnapshot] = None
        self._health_status = HealthStatus.OFFLINE

        self._inflight: Dict[str, asyncio.Task] = {}
        self._timer_task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

    # ==================== Public API ====================

    async def get(self) -> FeedSnapshot:
        """Cached snapshot if fresh, otherwise run a fetch cycle."""
        return await self.refetch(force=False)

    async def refetch(self, force: bool = False) -> FeedSnapshot:
        """
        Run a fetch cycle now.

        Concurrent callers share the cycle already in flight for this domain.

        Args:
            force: Skip the cache check and go to the network
        """
        if not force:
            cached = self._cached_snapshot()
            if cached is not None:
                return cached

        key = self.domain.domain_key
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run_cycle())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._clear_inflight(key, done))
        else:
            logger.debug(f"{self.domain.name}: joining in-flight fetch")

        return await asyncio.shield(task)

    def get_health_status(self) -> HealthStatus:
        return self._health_status

    def subscribe(self, callback: Listener) -> None:
        """Register callback for snapshots produced by fetch cycles."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ==================== Scheduling ====================

    def start(self) -> None:
        """Start periodic refresh; the first cycle runs immediately."""
        if self.is_running:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._refresh_loop())
        logger.info(
            f"{self.domain.name}: refreshing every {self.domain.settings.refresh_interval}s"
        )

    def stop(self) -> None:
        """Stop periodic refresh."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def dispose(self) -> List[asyncio.Task]:
        """
        Stop refreshing, cancel in-flight fetches and drop listeners.

        Returns:
            The cancelled tasks, for callers that want to await their teardown
        """
        cancelled = []
        if self._timer_task is not None:
            cancelled.append(self._timer_task)
        self.stop()

        for task in list(self._inflight.values()):
            task.cancel()
            cancelled.append(task)
        self._inflight.clear()
        self._listeners.clear()
        return cancelled

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.refetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.domain.name} refresh cycle failed: {type(e).__name__}: {e}")
            await self._sleep(self.domain.settings.refresh_interval)

    # ==================== Fetch Cycle ====================

    def _clear_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _cached_snapshot(self) -> Optional[FeedSnapshot]:
        cached = self.cache.get(self.domain.domain_key)
        if cached is None:
            return None
        return FeedSnapshot.from_dict(copy.deepcopy(cached), from_cache=True)

    async def _fetch(self) -> Any:
        if self._fetcher is not None:
            return await self._fetcher()

        if self._http_client is None:
            self._http_client = JsonHttpClient()
        return await self._http_client.get_first_json(
            self.domain.endpoints,
            params=self.domain.params,
            timeout=self.domain.settings.request_timeout,
        )

    def _rate_gate_allows(self) -> bool:
        limits = self.domain.rate_limit
        if limits.use_window and self.window_limiter is not None:
            return self.window_limiter.can_make_request(
                self.domain.name,
                max_requests=limits.max_requests_per_identifier,
                window_seconds=limits.window_seconds,
            )
        return True

    async def _run_cycle(self) -> FeedSnapshot:
        name = self.domain.name

        if not self._rate_gate_allows():
            signal = RateLimitSignal(
                f"Rate limit exceeded for {name}",
                context=name,
                identifier=name,
                status_code=None,
            )
            snapshot = self._last_known(error=str(signal), force_offline=False)
            snapshot.rate_limited = True
            self._publish(snapshot)
            return snapshot

        if self.domain.rate_limit.use_spacer and self.spacer is not None:
            await self.spacer.wait_if_needed()

        try:
            payload = await self.retry_manager.execute_with_retry(
                self._fetch,
                context=f"{name} price fetch",
                policy=self.retry_policy,
            )
        except FeedError as e:
            logger.warning(f"Failed to fetch {name} prices, using fallback: {e}")
            snapshot = self._last_known(error=str(e), force_offline=True)
            self._publish(snapshot)
            return snapshot

        try:
            result = reconcile(self.domain, payload)
        except Exception as e:
            logger.error(f"Failed to reconcile {name} payload: {type(e).__name__}: {e}")
            result = Err(
                reason=f"Unreadable {name} payload: {type(e).__name__}",
                values=self.domain.fallback_values(),
            )

        snapshot = self._build_snapshot(result)

        if snapshot.valid_fields > 0:
            self.cache.put(
                self.domain.domain_key,
                copy.deepcopy(snapshot.to_dict()),
                ttl_seconds=self.domain.settings.ttl_seconds,
                priority=self.domain.settings.priority,
            )
            self.last_updated = snapshot.last_updated
            if self.persist_on_write and self.persistence is not None:
                self.persistence.persist(self.cache)

        logger.info(
            f"{name} prices updated: {snapshot.valid_fields}/{snapshot.requested_fields} "
            f"fields valid ({snapshot.health_status.value})"
        )
        self._publish(snapshot)
        return snapshot

    def _build_snapshot(self, result: ReconcileResult) -> FeedSnapshot:
        requested = len(self.domain.requested_keys)
        now = self._clock()

        if isinstance(result, Ok):
            values, missing, error = result.values, [], None
        elif isinstance(result, PartialOk):
            values, missing, error = result.values, list(result.missing_keys), None
            logger.warning(f"{self.domain.name}: using fallback data for {', '.join(missing)}")
        elif isinstance(result, Err):
            values, missing, error = result.values, list(self.domain.requested_keys), result.reason
            logger.warning(f"{self.domain.name}: {result.reason}; using fallback table")
        else:
            raise TypeError(f"Unknown reconcile result: {result!r}")

        valid = requested - len(missing)
        return FeedSnapshot(
            domain=self.domain.name,
            values=values,
            last_updated=now if valid > 0 else self.last_updated,
            health_status=HealthStatus.from_ratio(valid / requested),
            error=error,
            valid_fields=valid,
            requested_fields=requested,
            missing_keys=missing,
        )

    def _last_known(self, error: str, force_offline: bool) -> FeedSnapshot:
        """Last unexpired cached snapshot, else the fallback table."""
        snapshot = self._cached_snapshot()

        if snapshot is None:
            snapshot = FeedSnapshot(
                domain=self.domain.name,
                values=self.domain.fallback_values(),
                last_updated=self.last_updated,
                health_status=HealthStatus.OFFLINE,
                valid_fields=0,
                requested_fields=len(self.domain.requested_keys),
                missing_keys=list(self.domain.requested_keys),
            )

        if force_offline:
            snapshot.health_status = HealthStatus.OFFLINE
        snapshot.error = error
        return snapshot

    def _publish(self, snapshot: FeedSnapshot) -> None:
        self.last_snapshot = snapshot
        self._health_status = snapshot.health_status

        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"{self.domain.name} listener error: {e}")
