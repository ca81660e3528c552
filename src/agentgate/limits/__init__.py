"""Rate and quota limits."""

from .quota import (
    QuotaDecision,
    QuotaReason,
    QuotaTracker,
    QuotaUsage,
    TokenUsage,
    day_bucket_start,
    hour_bucket_start,
)
from .sliding_window import RateLimitDecision, SlidingWindowLimiter

__all__ = [
    "QuotaDecision",
    "QuotaReason",
    "QuotaTracker",
    "QuotaUsage",
    "RateLimitDecision",
    "SlidingWindowLimiter",
    "TokenUsage",
    "day_bucket_start",
    "hour_bucket_start",
]
