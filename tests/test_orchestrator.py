"""
Unit tests for FeedOrchestrator.

Tests:
- Cache-first reads
- Health derivation from partial responses
- Substitution of numbers that cannot be normalized
- Fallback on exhausted retries and on rate-gate rejection
- Deduplication of concurrent fetches
- Subscribers and scheduled refresh, including cycles that fail unexpectedly
"""

import asyncio
import json
import unittest
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

from pricefeeds.cache import CacheManager, RateLimitConfig, SlidingWindowRateLimiter
from pricefeeds.core import HealthStatus, NetworkError, RetryManager
from pricefeeds.data_sources import FeedOrchestrator, create_crypto_domain, create_metals_domain
from pricefeeds.data_sources.crypto import CRYPTO_ASSETS, FALLBACK_CRYPTO_PRICES


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self, clock: FakeClock = None):
        self.clock = clock
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeFetcher:
    """Returns queued payloads or raises queued errors."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def crypto_payload(count=len(CRYPTO_ASSETS)):
    return {
        asset: {"usd": 1000.0 + i, "usd_24h_change": 0.5, "usd_market_cap": 5e9}
        for i, asset in enumerate(CRYPTO_ASSETS[:count])
    }


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.retry_sleep = RecordingSleep()
        self.cache = CacheManager(capacity=10, clock=self.clock)
        self.retry_manager = RetryManager(sleep=self.retry_sleep)
        self.domain = create_crypto_domain()

    def make_orchestrator(self, fetcher, domain=None, **kwargs):
        return FeedOrchestrator(
            domain or self.domain,
            self.cache,
            retry_manager=self.retry_manager,
            fetcher=fetcher,
            clock=self.clock,
            **kwargs,
        )


class TestCacheFirst(OrchestratorTestCase):

    async def test_fetch_then_cache_hit(self):
        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher)

        first = await orchestrator.get()
        second = await orchestrator.get()

        self.assertFalse(first.from_cache)
        self.assertTrue(second.from_cache)
        self.assertEqual(fetcher.calls, 1)
        self.assertEqual(second.values, first.values)
        self.assertEqual(first.last_updated, self.clock())

    async def test_expired_cache_refetches(self):
        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher)

        await orchestrator.get()
        self.clock.advance(self.domain.settings.ttl_seconds)
        snapshot = await orchestrator.get()

        self.assertFalse(snapshot.from_cache)
        self.assertEqual(fetcher.calls, 2)

    async def test_force_skips_cache(self):
        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher)

        await orchestrator.get()
        await orchestrator.refetch(force=True)

        self.assertEqual(fetcher.calls, 2)

    async def test_cached_snapshot_is_a_copy(self):
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))
        await orchestrator.get()

        cached = await orchestrator.get()
        cached.values["bitcoin"]["usd"] = -1

        again = await orchestrator.get()
        self.assertEqual(again.values["bitcoin"]["usd"], 1000.0)

    async def test_persist_on_write(self):
        persistence = MagicMock()
        orchestrator = self.make_orchestrator(
            FakeFetcher(crypto_payload()), persistence=persistence, persist_on_write=True
        )

        await orchestrator.get()

        persistence.persist.assert_called_once_with(self.cache)


class TestHealthDerivation(OrchestratorTestCase):

    async def test_all_assets_healthy(self):
        snapshot = await self.make_orchestrator(FakeFetcher(crypto_payload())).get()

        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertEqual(snapshot.valid_fields, 12)
        self.assertEqual(snapshot.missing_keys, [])
        self.assertIsNone(snapshot.error)

    async def test_one_missing_asset_still_healthy(self):
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload(11)))

        with self.assertLogs("pricefeeds.data_sources.orchestrator", level="WARNING") as logs:
            snapshot = await orchestrator.get()

        self.assertIn("crypto: using fallback data for cosmos", "\n".join(logs.output))
        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertEqual(snapshot.valid_fields, 11)
        self.assertEqual(snapshot.missing_keys, ["cosmos"])
        self.assertEqual(snapshot.values["cosmos"], FALLBACK_CRYPTO_PRICES["cosmos"])
        self.assertIsNotNone(self.cache.get("crypto_prices"))
        self.assertEqual(orchestrator.get_health_status(), HealthStatus.HEALTHY)

    async def test_half_missing_degraded(self):
        snapshot = await self.make_orchestrator(FakeFetcher(crypto_payload(6))).get()
        self.assertEqual(snapshot.health_status, HealthStatus.DEGRADED)

    async def test_mostly_missing_offline(self):
        snapshot = await self.make_orchestrator(FakeFetcher(crypto_payload(1))).get()
        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertEqual(len(snapshot.values), 12)

    async def test_unusable_payload_not_cached(self):
        orchestrator = self.make_orchestrator(FakeFetcher({"unexpected": "shape"}))

        snapshot = await orchestrator.get()

        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertIsNotNone(snapshot.error)
        self.assertEqual(snapshot.values["bitcoin"], FALLBACK_CRYPTO_PRICES["bitcoin"])
        self.assertIsNone(self.cache.get("crypto_prices"))


class TestUnnormalizableNumbers(OrchestratorTestCase):

    async def test_oversized_integer_falls_back_for_that_asset(self):
        payload = json.loads(json.dumps(crypto_payload()).replace("1000.0", "1" + "0" * 400, 1))
        self.assertEqual(payload["bitcoin"]["usd"], 10 ** 400)

        snapshot = await self.make_orchestrator(FakeFetcher(payload)).get()

        self.assertEqual(snapshot.missing_keys, ["bitcoin"])
        self.assertEqual(snapshot.values["bitcoin"], FALLBACK_CRYPTO_PRICES["bitcoin"])
        self.assertEqual(snapshot.valid_fields, 11)
        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertIsNotNone(self.cache.get("crypto_prices"))

    async def test_numeric_strings_fall_back_beside_valid_siblings(self):
        payload = crypto_payload()
        payload["ethereum"]["usd"] = "3400"
        payload["solana"] = {"usd": "185.2", "usd_24h_change": "1.1", "usd_market_cap": "8e10"}

        snapshot = await self.make_orchestrator(FakeFetcher(payload)).get()

        self.assertEqual(snapshot.missing_keys, ["ethereum", "solana"])
        self.assertEqual(snapshot.values["ethereum"], FALLBACK_CRYPTO_PRICES["ethereum"])
        self.assertEqual(snapshot.values["bitcoin"]["usd"], 1000.0)
        self.assertEqual(snapshot.valid_fields, 10)
        self.assertEqual(snapshot.health_status, HealthStatus.DEGRADED)

    async def test_reconcile_error_returns_offline_fallback(self):
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))

        with patch(
            "pricefeeds.data_sources.orchestrator.reconcile",
            side_effect=RuntimeError("bad payload"),
        ), self.assertLogs("pricefeeds.data_sources.orchestrator", level="ERROR"):
            snapshot = await orchestrator.get()

        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertIn("RuntimeError", snapshot.error)
        self.assertEqual(snapshot.values, self.domain.fallback_values())
        self.assertIsNone(self.cache.get("crypto_prices"))


class TestFailureFallback(OrchestratorTestCase):

    async def test_exhausted_retries_return_fallback_table(self):
        fetcher = FakeFetcher(NetworkError("connection refused"))
        orchestrator = self.make_orchestrator(fetcher)

        snapshot = await orchestrator.get()

        self.assertEqual(fetcher.calls, 4)
        self.assertEqual(self.retry_sleep.calls, [1.0, 2.0, 4.0])
        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertIn("connection refused", snapshot.error)
        self.assertEqual(snapshot.values["bitcoin"], FALLBACK_CRYPTO_PRICES["bitcoin"])
        self.assertEqual(snapshot.valid_fields, 0)
        self.assertIsNone(self.cache.get("crypto_prices"))

    async def test_metals_policy_stops_after_three_attempts(self):
        fetcher = FakeFetcher(NetworkError("timeout"))
        orchestrator = self.make_orchestrator(
            fetcher, domain=create_metals_domain(endpoints=["https://metals.example"])
        )

        snapshot = await orchestrator.get()

        self.assertEqual(fetcher.calls, 3)
        self.assertEqual(self.retry_sleep.calls, [2.0, 4.0])
        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)

    async def test_failure_keeps_last_cached_values(self):
        fetcher = FakeFetcher(crypto_payload(), NetworkError("down"))
        orchestrator = self.make_orchestrator(fetcher)

        await orchestrator.get()
        snapshot = await orchestrator.refetch(force=True)

        self.assertEqual(snapshot.values["bitcoin"]["usd"], 1000.0)
        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertTrue(snapshot.from_cache)
        self.assertIsNotNone(snapshot.error)

    async def test_recovery_after_failure(self):
        fetcher = FakeFetcher(NetworkError("down"), crypto_payload())
        orchestrator = self.make_orchestrator(fetcher)

        snapshot = await orchestrator.get()

        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertEqual(fetcher.calls, 2)


class TestRateGate(OrchestratorTestCase):

    def setUp(self):
        super().setUp()
        self.limiter = SlidingWindowRateLimiter(clock=self.clock)
        self.domain = replace(
            create_crypto_domain(),
            rate_limit=RateLimitConfig(max_requests_per_identifier=1, use_spacer=False, name="test"),
        )

    async def test_rejection_without_cache_returns_fallback(self):
        self.limiter.can_make_request("crypto", max_requests=1)
        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher, window_limiter=self.limiter)

        snapshot = await orchestrator.get()

        self.assertEqual(fetcher.calls, 0)
        self.assertTrue(snapshot.rate_limited)
        self.assertEqual(snapshot.health_status, HealthStatus.OFFLINE)
        self.assertEqual(snapshot.values, self.domain.fallback_values())
        self.assertEqual(snapshot.error, "[crypto] Rate limit exceeded for crypto")
        self.assertIsNone(self.cache.get("crypto_prices"))

    async def test_rejection_with_cache_returns_cached(self):
        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher, window_limiter=self.limiter)

        await orchestrator.get()
        snapshot = await orchestrator.refetch(force=True)

        self.assertEqual(fetcher.calls, 1)
        self.assertTrue(snapshot.rate_limited)
        self.assertTrue(snapshot.from_cache)
        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertIn("Rate limit", snapshot.error)


class TestDeduplication(OrchestratorTestCase):

    async def test_concurrent_refetches_share_one_fetch(self):
        release = asyncio.Event()
        calls = []

        async def slow_fetch():
            calls.append(1)
            await release.wait()
            return crypto_payload()

        orchestrator = self.make_orchestrator(slow_fetch)

        first = asyncio.ensure_future(orchestrator.refetch(force=True))
        second = asyncio.ensure_future(orchestrator.refetch(force=True))
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second)

        self.assertEqual(len(calls), 1)
        self.assertIs(results[0], results[1])
        self.assertEqual(orchestrator._inflight, {})

    async def test_cancelled_caller_does_not_cancel_fetch(self):
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return crypto_payload()

        orchestrator = self.make_orchestrator(slow_fetch)

        impatient = asyncio.ensure_future(orchestrator.refetch(force=True))
        patient = asyncio.ensure_future(orchestrator.refetch(force=True))
        await asyncio.sleep(0)
        impatient.cancel()
        release.set()

        snapshot = await patient
        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)


class TestSubscribersAndScheduling(OrchestratorTestCase):

    async def test_subscribers_notified(self):
        received = []
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))
        orchestrator.subscribe(received.append)

        snapshot = await orchestrator.get()
        await orchestrator.get()  # cache hit, no notification

        self.assertEqual(received, [snapshot])

    async def test_failing_subscriber_does_not_break_fetch(self):
        received = []

        def broken(snapshot):
            raise RuntimeError("boom")

        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))
        orchestrator.subscribe(broken)
        orchestrator.subscribe(received.append)

        with self.assertLogs("pricefeeds.data_sources.orchestrator", level="ERROR"):
            snapshot = await orchestrator.get()

        self.assertEqual(snapshot.health_status, HealthStatus.HEALTHY)
        self.assertEqual(len(received), 1)

    async def test_unsubscribe(self):
        received = []
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))
        orchestrator.subscribe(received.append)
        orchestrator.unsubscribe(received.append)

        await orchestrator.get()

        self.assertEqual(received, [])

    async def test_scheduled_refresh(self):
        blocked = asyncio.Event()
        intervals = []

        async def schedule_sleep(seconds):
            intervals.append(seconds)
            self.clock.advance(seconds)
            if len(intervals) >= 2:
                await blocked.wait()

        fetcher = FakeFetcher(crypto_payload())
        orchestrator = self.make_orchestrator(fetcher, sleep=schedule_sleep)

        orchestrator.start()
        self.assertTrue(orchestrator.is_running)
        for _ in range(20):
            await asyncio.sleep(0)

        # TTL is shorter than the interval, so each tick fetches
        self.assertEqual(fetcher.calls, 2)
        self.assertEqual(intervals, [120, 120])

        cancelled = orchestrator.dispose()
        self.assertFalse(orchestrator.is_running)
        await asyncio.gather(*cancelled, return_exceptions=True)

    async def test_scheduled_refresh_survives_raising_validator(self):
        blocked = asyncio.Event()
        intervals = []

        async def schedule_sleep(seconds):
            intervals.append(seconds)
            if len(intervals) >= 2:
                await blocked.wait()

        def broken_validate(raw):
            raise ValueError("cannot parse record")

        fetcher = FakeFetcher(crypto_payload())
        domain = replace(self.domain, validate=broken_validate)
        orchestrator = self.make_orchestrator(fetcher, domain=domain, sleep=schedule_sleep)

        orchestrator.start()
        for _ in range(20):
            await asyncio.sleep(0)

        self.assertEqual(fetcher.calls, 2)
        self.assertTrue(orchestrator.is_running)
        self.assertEqual(orchestrator.last_snapshot.health_status, HealthStatus.OFFLINE)
        self.assertEqual(orchestrator.last_snapshot.values, self.domain.fallback_values())

        cancelled = orchestrator.dispose()
        await asyncio.gather(*cancelled, return_exceptions=True)

    async def test_scheduled_refresh_continues_after_cycle_error(self):
        blocked = asyncio.Event()
        intervals = []

        async def schedule_sleep(seconds):
            intervals.append(seconds)
            if len(intervals) >= 2:
                await blocked.wait()

        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()), sleep=schedule_sleep)
        orchestrator.refetch = AsyncMock(side_effect=RuntimeError("cycle exploded"))

        with self.assertLogs("pricefeeds.data_sources.orchestrator", level="ERROR") as logs:
            orchestrator.start()
            for _ in range(20):
                await asyncio.sleep(0)

        self.assertEqual(orchestrator.refetch.await_count, 2)
        self.assertEqual(intervals, [120, 120])
        self.assertTrue(orchestrator.is_running)
        self.assertIn("cycle exploded", logs.output[0])

        cancelled = orchestrator.dispose()
        await asyncio.gather(*cancelled, return_exceptions=True)

    async def test_dispose_clears_state(self):
        orchestrator = self.make_orchestrator(FakeFetcher(crypto_payload()))
        orchestrator.subscribe(lambda snapshot: None)

        orchestrator.dispose()

        self.assertEqual(orchestrator._listeners, [])
        self.assertFalse(orchestrator.is_running)


if __name__ == "__main__":
    unittest.main()
