# Per-agent token and cost quotas
#
# Two fixed-period budget families, checked in this order:
#   1. hourly input tokens, hourly output tokens  (tokenUsage/{agent}/hourly/{hourStart})
#   2. daily cost                                 (tokenUsage/{agent}/daily/{dayStart})
#
# Each check is prospective: would current + delta exceed the ceiling?
# The first failing ceiling is returned as the denial reason and nothing is
# recorded. Buckets are only ever incremented, and only after every check
# passed.
#
# Bucket boundaries are UTC: the hour bucket starts at now - now % 1h and the
# day bucket at now - now % 24h (epoch milliseconds). Quotas therefore reset
# at the top of each UTC hour and at 00:00 UTC.
#
# Concurrency: both bucket keys of the agent are locked, always hourly first,
# for the whole check-and-consume. If the daily write fails after the hourly
# one, or the hourly write timed out and may have landed, PartialUpdateFailure
# is raised for operators to reconcile. The transaction is never re-run.

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.clock import Clock, now_ms
from ..core.config import DAY_MS, HOUR_MS, TokenLimitPolicy
from ..core.errors import PartialUpdateFailure, StoreUnavailable, WriteIndeterminate
from ..store import paths
from ..store.base import KeyValueStore

logger = logging.getLogger(__name__)


class QuotaReason(str, Enum):
    """Which ceiling a denied consumption would have crossed."""

    HOURLY_INPUT = "hourly-input"
    HOURLY_OUTPUT = "hourly-output"
    DAILY_COST = "daily-cost"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[QuotaReason] = None


@dataclass(frozen=True)
class TokenUsage:
    """Token/cost delta of one model invocation."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass(frozen=True)
class QuotaUsage:
    """Snapshot of an agent's current buckets against the ceilings."""

    agent_id: str
    hour_start: int
    day_start: int
    hourly_input_tokens: float
    hourly_output_tokens: float
    hourly_cost: float
    daily_cost: float
    limits: TokenLimitPolicy

    @property
    def remaining_input_tokens(self) -> float:
        return max(0, self.limits.max_input_tokens_per_hour - self.hourly_input_tokens)

    @property
    def remaining_output_tokens(self) -> float:
        return max(0, self.limits.max_output_tokens_per_hour - self.hourly_output_tokens)

    @property
    def remaining_daily_cost(self) -> float:
        return max(0, self.limits.max_cost_per_day - self.daily_cost)


def hour_bucket_start(timestamp_ms: int) -> int:
    return timestamp_ms - timestamp_ms % HOUR_MS


def day_bucket_start(timestamp_ms: int) -> int:
    return timestamp_ms - timestamp_ms % DAY_MS


def _hourly(doc: Optional[Dict[str, Any]]) -> Dict[str, float]:
    doc = doc or {}
    return {
        "inputTokens": doc.get("inputTokens", 0),
        "outputTokens": doc.get("outputTokens", 0),
        "cost": doc.get("cost", 0),
    }


def _daily(doc: Optional[Dict[str, Any]]) -> Dict[str, float]:
    return {"cost": (doc or {}).get("cost", 0)}


class QuotaTracker:
    """Hourly token and daily cost budgets per agent.

    Args:
        store: Key-value store holding the usage buckets.
        limits: Token/cost ceilings.
        clock: Millisecond clock (defaults to wall time).
    """

    def __init__(
        self,
        store: KeyValueStore,
        limits: TokenLimitPolicy,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._limits = limits
        self._clock = clock or now_ms

    @property
    def limits(self) -> TokenLimitPolicy:
        return self._limits

    async def check_and_consume(
        self,
        agent_id: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
    ) -> QuotaDecision:
        """Consume a token/cost delta if every ceiling still holds.

        Returns:
            QuotaDecision; ``reason`` names the first ceiling that would be
            crossed when denied.

        Raises:
            ValueError: a negative delta.
            StoreUnavailable: the store failed before anything was written.
            PartialUpdateFailure: the hourly bucket was (or may have been)
                written but the daily bucket was not.
        """
        if input_tokens < 0 or output_tokens < 0 or cost < 0:
            raise ValueError("Quota deltas must be non-negative")

        now = self._clock()
        hourly_path = paths.hourly_usage(agent_id, hour_bucket_start(now))
        daily_path = paths.daily_usage(agent_id, day_bucket_start(now))
        limits = self._limits

        async with self._store.lock(hourly_path), self._store.lock(daily_path):
            hourly = _hourly(await self._store.get(hourly_path))

            if hourly["inputTokens"] + input_tokens > limits.max_input_tokens_per_hour:
                return self._deny(agent_id, QuotaReason.HOURLY_INPUT)
            if hourly["outputTokens"] + output_tokens > limits.max_output_tokens_per_hour:
                return self._deny(agent_id, QuotaReason.HOURLY_OUTPUT)

            daily = _daily(await self._store.get(daily_path))
            if daily["cost"] + cost > limits.max_cost_per_day:
                return self._deny(agent_id, QuotaReason.DAILY_COST)

            deltas = {
                "inputTokens": input_tokens,
                "outputTokens": output_tokens,
                "cost": cost,
            }
            try:
                await self._store.set(hourly_path, {
                    "inputTokens": hourly["inputTokens"] + input_tokens,
                    "outputTokens": hourly["outputTokens"] + output_tokens,
                    "cost": hourly["cost"] + cost,
                })
            except WriteIndeterminate as exc:
                logger.error(
                    "Hourly quota write for %s timed out and may have landed (%s)",
                    agent_id, hourly_path,
                )
                raise PartialUpdateFailure(
                    agent_id, hourly_path, daily_path, deltas, cause=exc
                ) from exc
            try:
                await self._store.set(daily_path, {"cost": daily["cost"] + cost})
            except StoreUnavailable as exc:
                logger.error(
                    "Daily quota write failed after hourly commit for %s (%s)",
                    agent_id, daily_path,
                )
                raise PartialUpdateFailure(
                    agent_id, hourly_path, daily_path, deltas, cause=exc
                ) from exc

        return QuotaDecision(allowed=True)

    async def consume(self, agent_id: str, usage: TokenUsage) -> QuotaDecision:
        return await self.check_and_consume(
            agent_id, usage.input_tokens, usage.output_tokens, usage.cost
        )

    async def usage(self, agent_id: str) -> QuotaUsage:
        """Current hourly/daily accumulators (read-only)."""
        now = self._clock()
        hour_start = hour_bucket_start(now)
        day_start = day_bucket_start(now)
        hourly = _hourly(await self._store.get(paths.hourly_usage(agent_id, hour_start)))
        daily = _daily(await self._store.get(paths.daily_usage(agent_id, day_start)))
        return QuotaUsage(
            agent_id=agent_id,
            hour_start=hour_start,
            day_start=day_start,
            hourly_input_tokens=hourly["inputTokens"],
            hourly_output_tokens=hourly["outputTokens"],
            hourly_cost=hourly["cost"],
            daily_cost=daily["cost"],
            limits=self._limits,
        )

    def _deny(self, agent_id: str, reason: QuotaReason) -> QuotaDecision:
        logger.info("Quota denied for %s: %s", agent_id, reason.value)
        return QuotaDecision(allowed=False, reason=reason)
