"""
Tests for per-agent token and cost quotas.

Covers: prospective checks, denial reasons in check order, strict ceilings,
UTC hour/day bucket boundaries, negative deltas, usage snapshots, concurrent
consumption, and PartialUpdateFailure when only the hourly write lands.
"""

import asyncio
from unittest.mock import patch

import pytest

from agentgate.core.config import DAY_MS, HOUR_MS, TokenLimitPolicy
from agentgate.core.errors import PartialUpdateFailure, StoreUnavailable
from agentgate.limits.quota import (
    QuotaReason,
    QuotaTracker,
    TokenUsage,
    day_bucket_start,
    hour_bucket_start,
)
from agentgate.store import paths

from conftest import DAY_START, T0

LIMITS = TokenLimitPolicy(
    max_input_tokens_per_hour=1000,
    max_output_tokens_per_hour=500,
    max_cost_per_day=10,
)


def _make_tracker(store, clock, limits: TokenLimitPolicy = LIMITS) -> QuotaTracker:
    return QuotaTracker(store, limits, clock=clock)


# ===================================================================
# TestBuckets
# ===================================================================


class TestBuckets:
    def test_hour_bucket_start(self):
        assert hour_bucket_start(T0) == DAY_START + 10 * HOUR_MS

    def test_day_bucket_start(self):
        assert day_bucket_start(T0) == DAY_START

    def test_boundaries_are_inclusive_of_start(self):
        assert hour_bucket_start(DAY_START) == DAY_START
        assert day_bucket_start(DAY_START + DAY_MS - 1) == DAY_START


# ===================================================================
# TestCheckAndConsume
# ===================================================================


class TestCheckAndConsume:
    @pytest.mark.asyncio
    async def test_allowed_consumption_is_recorded(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        decision = await tracker.check_and_consume("ag", 100, 50, 1.5)
        assert decision.allowed is True
        assert decision.reason is None

        hourly = await memory_store.get(paths.hourly_usage("ag", hour_bucket_start(T0)))
        daily = await memory_store.get(paths.daily_usage("ag", DAY_START))
        assert hourly == {"inputTokens": 100, "outputTokens": 50, "cost": 1.5}
        assert daily == {"cost": 1.5}

    @pytest.mark.asyncio
    async def test_exactly_reaching_ceiling_is_allowed(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        assert (await tracker.check_and_consume("ag", 1000, 500, 10)).allowed is True
        assert (await tracker.check_and_consume("ag", 1, 0, 0)).allowed is False

    @pytest.mark.asyncio
    async def test_hourly_input_denial(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("ag", 900, 0, 0)
        decision = await tracker.check_and_consume("ag", 200, 0, 0)
        assert decision.allowed is False
        assert decision.reason == QuotaReason.HOURLY_INPUT

    @pytest.mark.asyncio
    async def test_hourly_output_denial(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        decision = await tracker.check_and_consume("ag", 0, 501, 0)
        assert decision.reason == QuotaReason.HOURLY_OUTPUT

    @pytest.mark.asyncio
    async def test_daily_cost_denial(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        decision = await tracker.check_and_consume("ag", 0, 0, 10.01)
        assert decision.reason == QuotaReason.DAILY_COST

    @pytest.mark.asyncio
    async def test_first_failing_ceiling_wins(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        decision = await tracker.check_and_consume("ag", 5000, 5000, 500)
        assert decision.reason == QuotaReason.HOURLY_INPUT

    @pytest.mark.asyncio
    async def test_denial_records_nothing(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("ag", 100, 100, 1)
        await tracker.check_and_consume("ag", 100, 100, 100)
        usage = await tracker.usage("ag")
        assert usage.hourly_input_tokens == 100
        assert usage.daily_cost == 1

    @pytest.mark.asyncio
    async def test_negative_delta_rejected(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        with pytest.raises(ValueError):
            await tracker.check_and_consume("ag", -1, 0, 0)
        with pytest.raises(ValueError):
            await tracker.consume("ag", TokenUsage(cost=-0.5))

    @pytest.mark.asyncio
    async def test_agents_are_isolated(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("a", 1000, 0, 0)
        assert (await tracker.check_and_consume("b", 1000, 0, 0)).allowed is True


# ===================================================================
# TestBucketRollover
# ===================================================================


class TestBucketRollover:
    @pytest.mark.asyncio
    async def test_hourly_quota_resets_next_hour(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("ag", 1000, 0, 0)
        assert (await tracker.check_and_consume("ag", 1, 0, 0)).allowed is False

        clock.set(hour_bucket_start(T0) + HOUR_MS)
        assert (await tracker.check_and_consume("ag", 1, 0, 0)).allowed is True

    @pytest.mark.asyncio
    async def test_daily_cost_spans_hours(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("ag", 0, 0, 6)
        clock.advance(HOUR_MS)
        decision = await tracker.check_and_consume("ag", 0, 0, 6)
        assert decision.reason == QuotaReason.DAILY_COST

    @pytest.mark.asyncio
    async def test_daily_cost_resets_at_utc_midnight(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.check_and_consume("ag", 0, 0, 10)
        clock.set(DAY_START + DAY_MS)
        assert (await tracker.check_and_consume("ag", 0, 0, 10)).allowed is True


# ===================================================================
# TestUsage
# ===================================================================


class TestUsage:
    @pytest.mark.asyncio
    async def test_usage_snapshot(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        await tracker.consume("ag", TokenUsage(input_tokens=300, output_tokens=100, cost=2))
        usage = await tracker.usage("ag")
        assert usage.hour_start == hour_bucket_start(T0)
        assert usage.day_start == DAY_START
        assert usage.remaining_input_tokens == 700
        assert usage.remaining_output_tokens == 400
        assert usage.remaining_daily_cost == 8

    @pytest.mark.asyncio
    async def test_usage_of_unknown_agent(self, memory_store, clock):
        usage = await _make_tracker(memory_store, clock).usage("nobody")
        assert usage.hourly_input_tokens == 0
        assert usage.daily_cost == 0


# ===================================================================
# TestConcurrency
# ===================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_overshoot(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        results = await asyncio.gather(
            *(tracker.check_and_consume("ag", 100, 0, 0) for _ in range(25))
        )
        assert sum(1 for r in results if r.allowed) == 10
        assert (await tracker.usage("ag")).hourly_input_tokens == 1000


# ===================================================================
# TestPartialUpdate
# ===================================================================


class TestPartialUpdate:
    @pytest.mark.asyncio
    async def test_daily_write_failure_raises_partial_update(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        daily_path = paths.daily_usage("ag", DAY_START)
        real_set = memory_store.set

        async def failing_set(path, value):
            if path == daily_path:
                raise StoreUnavailable("daily write lost")
            await real_set(path, value)

        with patch.object(memory_store, "set", side_effect=failing_set):
            with pytest.raises(PartialUpdateFailure) as exc:
                await tracker.check_and_consume("ag", 10, 5, 1)

        err = exc.value
        assert err.agent_id == "ag"
        assert err.failed_path == daily_path
        assert err.committed_path == paths.hourly_usage("ag", hour_bucket_start(T0))
        assert err.deltas == {"inputTokens": 10, "outputTokens": 5, "cost": 1}
        assert isinstance(err.cause, StoreUnavailable)
        # Hourly landed, daily did not
        assert (await tracker.usage("ag")).hourly_input_tokens == 10
        assert (await tracker.usage("ag")).daily_cost == 0

    @pytest.mark.asyncio
    async def test_hourly_write_failure_is_plain_store_error(self, memory_store, clock):
        tracker = _make_tracker(memory_store, clock)
        with patch.object(memory_store, "set", side_effect=StoreUnavailable("down")):
            with pytest.raises(StoreUnavailable) as exc:
                await tracker.check_and_consume("ag", 10, 5, 1)
        assert not isinstance(exc.value, PartialUpdateFailure)
