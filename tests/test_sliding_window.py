"""
Tests for the sliding-window rate limiter.

Covers: admission up to max, denial with reset time, window expiry at the
exact boundary, per-identifier and per-category isolation, pruning on
denials, read-only peek, reset, and concurrent callers never exceeding max
(in-memory and SQLite).
"""

import asyncio

import pytest

from agentgate.core.config import MINUTE_MS, RateCategory, RateLimitPolicies, RateLimitPolicy
from agentgate.limits.sliding_window import SlidingWindowLimiter, prune
from agentgate.store import paths


def _policies(max_requests: int = 3, window_ms: int = MINUTE_MS) -> RateLimitPolicies:
    policy = RateLimitPolicy(window_ms=window_ms, max=max_requests)
    return RateLimitPolicies(api=policy, agents=policy, messages=policy)


def _make_limiter(store, clock, **kwargs) -> SlidingWindowLimiter:
    return SlidingWindowLimiter(store, _policies(**kwargs), clock=clock)


# ===================================================================
# TestAdmission
# ===================================================================


class TestAdmission:
    @pytest.mark.asyncio
    async def test_allows_up_to_max(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        remaining = []
        for _ in range(3):
            decision = await limiter.check_and_record("1.2.3.4", RateCategory.API)
            assert decision.allowed is True
            remaining.append(decision.remaining)
        assert remaining == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_denies_beyond_max(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        first = clock()
        for _ in range(3):
            await limiter.check_and_record("1.2.3.4", RateCategory.API)
            clock.advance(1000)

        decision = await limiter.check_and_record("1.2.3.4", RateCategory.API)
        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.limit == 3
        assert decision.reset_time == first + MINUTE_MS

    @pytest.mark.asyncio
    async def test_denial_does_not_record(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for _ in range(5):
            await limiter.check_and_record("1.2.3.4", RateCategory.API)
        stored = await memory_store.get(paths.rate_window("1.2.3.4", "api"))
        assert len(stored) == 3

    @pytest.mark.asyncio
    async def test_allowed_reset_time(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        decision = await limiter.check_and_record("x", RateCategory.API)
        assert decision.reset_time == clock() + MINUTE_MS

    @pytest.mark.asyncio
    async def test_accepts_category_string(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        decision = await limiter.check_and_record("x", "agents")
        assert decision.allowed is True
        assert await memory_store.get(paths.rate_window("x", "agents")) == [clock()]


# ===================================================================
# TestWindowBoundary
# ===================================================================


class TestWindowBoundary:
    @pytest.mark.asyncio
    async def test_slot_frees_exactly_at_window_end(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=1)
        start = clock()
        await limiter.check_and_record("x", RateCategory.API)

        clock.set(start + MINUTE_MS - 1)
        assert (await limiter.check_and_record("x", RateCategory.API)).allowed is False

        # ts > now - window is exclusive: at start + window the entry is gone
        clock.set(start + MINUTE_MS)
        assert (await limiter.check_and_record("x", RateCategory.API)).allowed is True

    @pytest.mark.asyncio
    async def test_denial_prunes_stale_entries(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=2)
        path = paths.rate_window("x", "api")
        await memory_store.set(path, [clock() - 2 * MINUTE_MS, clock() - 1, clock()])

        decision = await limiter.check_and_record("x", RateCategory.API)
        assert decision.allowed is False
        assert await memory_store.get(path) == [clock() - 1, clock()]

    def test_prune_is_exclusive(self):
        assert prune([100, 50, 200], now=200, window_ms=100) == [200]
        assert prune([101, 100], now=200, window_ms=100) == [101]


# ===================================================================
# TestIsolation
# ===================================================================


class TestIsolation:
    @pytest.mark.asyncio
    async def test_identifiers_are_isolated(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=1)
        assert (await limiter.check_and_record("a", RateCategory.API)).allowed
        assert (await limiter.check_and_record("b", RateCategory.API)).allowed
        assert not (await limiter.check_and_record("a", RateCategory.API)).allowed

    @pytest.mark.asyncio
    async def test_categories_are_isolated(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=1)
        assert (await limiter.check_and_record("a", RateCategory.API)).allowed
        assert (await limiter.check_and_record("a", RateCategory.MESSAGES)).allowed
        assert not (await limiter.check_and_record("a", RateCategory.API)).allowed


# ===================================================================
# TestPeekAndReset
# ===================================================================


class TestPeekAndReset:
    @pytest.mark.asyncio
    async def test_peek_never_records(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        await limiter.check_and_record("x", RateCategory.API)
        for _ in range(5):
            view = await limiter.peek("x", RateCategory.API)
        assert view.allowed is True
        assert view.remaining == 2
        assert await memory_store.get(paths.rate_window("x", "api")) == [clock()]

    @pytest.mark.asyncio
    async def test_peek_reports_exhausted_window(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for _ in range(3):
            await limiter.check_and_record("x", RateCategory.API)
        view = await limiter.peek("x", RateCategory.API)
        assert view.allowed is False
        assert view.remaining == 0

    @pytest.mark.asyncio
    async def test_reset_single_category(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=1)
        await limiter.check_and_record("x", RateCategory.API)
        await limiter.check_and_record("x", RateCategory.AGENTS)
        await limiter.reset("x", RateCategory.API)
        assert (await limiter.check_and_record("x", RateCategory.API)).allowed
        assert not (await limiter.check_and_record("x", RateCategory.AGENTS)).allowed

    @pytest.mark.asyncio
    async def test_reset_all_categories(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=1)
        for category in RateCategory:
            await limiter.check_and_record("x", category)
        await limiter.reset("x")
        for category in RateCategory:
            assert (await limiter.check_and_record("x", category)).allowed


# ===================================================================
# TestConcurrency
# ===================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_max_in_memory(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock, max_requests=10)
        results = await asyncio.gather(
            *(limiter.check_and_record("x", RateCategory.API) for _ in range(40))
        )
        assert sum(1 for r in results if r.allowed) == 10
        assert len(await memory_store.get(paths.rate_window("x", "api"))) == 10

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_max_sqlite(self, sqlite_store, clock):
        limiter = _make_limiter(sqlite_store, clock, max_requests=5)
        results = await asyncio.gather(
            *(limiter.check_and_record("x", RateCategory.API) for _ in range(15))
        )
        assert sum(1 for r in results if r.allowed) == 5
        assert len(await sqlite_store.get(paths.rate_window("x", "api"))) == 5

    @pytest.mark.asyncio
    async def test_two_limiters_share_one_store(self, memory_store, clock):
        a = _make_limiter(memory_store, clock, max_requests=4)
        b = _make_limiter(memory_store, clock, max_requests=4)
        results = await asyncio.gather(
            *(lim.check_and_record("x", RateCategory.API) for lim in [a, b] * 6)
        )
        assert sum(1 for r in results if r.allowed) == 4
