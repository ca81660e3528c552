# Per-identifier sliding window rate limiter
#
# "At most N operations of category C per rolling window W", evaluated
# against the last W milliseconds ending at now on every check (no fixed
# buckets). State lives in the shared store at rateLimits/{identifier}/{category}
# as an ordered list of request timestamps.
#
# Admission and record-append are one operation: the whole load/prune/decide/
# persist sequence runs under the store's lock for that exact key.

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..core.clock import Clock, now_ms
from ..core.config import RateCategory, RateLimitPolicies, RateLimitPolicy
from ..store import paths
from ..store.base import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a sliding-window check.

    ``reset_time`` is the earliest moment (epoch ms) a new request would be
    admitted when denied, or when the just-recorded request leaves the window
    when allowed.
    """

    allowed: bool
    remaining: int
    reset_time: int
    limit: int


def prune(timestamps: List[int], now: int, window_ms: int) -> List[int]:
    """Keep timestamps strictly newer than ``now - window_ms``."""
    cutoff = now - window_ms
    return sorted(t for t in timestamps if t > cutoff)


class SlidingWindowLimiter:
    """Sliding-window admission limiter shared across service instances.

    Args:
        store: Key-value store holding the timestamp sequences.
        policies: Per-category window/max configuration.
        clock: Millisecond clock (defaults to wall time).
    """

    def __init__(
        self,
        store: KeyValueStore,
        policies: RateLimitPolicies,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._policies = policies
        self._clock = clock or now_ms

    def policy(self, category: RateCategory) -> RateLimitPolicy:
        return self._policies.for_category(category)

    async def check_and_record(
        self, identifier: str, category: RateCategory
    ) -> RateLimitDecision:
        """Check the window for ``identifier``/``category`` and record this request if allowed.

        The pruned sequence is written back on denials too, so repeated
        denials never leave stale timestamps behind.
        """
        category = RateCategory(category)
        policy = self.policy(category)
        path = paths.rate_window(identifier, category.value)

        async with self._store.lock(path):
            now = self._clock()
            stored = await self._store.get(path) or []
            window = prune(stored, now, policy.window_ms)

            if len(window) >= policy.max:
                if len(window) != len(stored):
                    await self._store.set(path, window)
                logger.debug(
                    "Rate limit hit for %s/%s: %d in %dms",
                    identifier, category.value, len(window), policy.window_ms,
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=window[0] + policy.window_ms,
                    limit=policy.max,
                )

            window.append(now)
            await self._store.set(path, window)

        return RateLimitDecision(
            allowed=True,
            remaining=policy.max - len(window),
            reset_time=now + policy.window_ms,
            limit=policy.max,
        )

    async def peek(
        self, identifier: str, category: RateCategory
    ) -> RateLimitDecision:
        """Read-only view of the window: nothing is recorded or rewritten."""
        category = RateCategory(category)
        policy = self.policy(category)
        now = self._clock()
        window = prune(
            await self._store.get(paths.rate_window(identifier, category.value)) or [],
            now,
            policy.window_ms,
        )
        if len(window) >= policy.max:
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_time=window[0] + policy.window_ms,
                limit=policy.max,
            )
        return RateLimitDecision(
            allowed=True,
            remaining=policy.max - len(window),
            reset_time=(window[0] if window else now) + policy.window_ms,
            limit=policy.max,
        )

    async def reset(
        self, identifier: str, category: Optional[RateCategory] = None
    ) -> None:
        """Clear one window, or every category for ``identifier``."""
        categories = [RateCategory(category)] if category else list(RateCategory)
        for cat in categories:
            path = paths.rate_window(identifier, cat.value)
            async with self._store.lock(path):
                await self._store.delete(path)
