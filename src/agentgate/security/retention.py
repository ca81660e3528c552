# Retention sweeper
#
# Periodically drops admission-control state that no live check can see any
# more. The predicate matches the live checks (keep ts > now - max_age):
#
#   rateLimits/{id}/{category}          pruned under the key lock, deleted when empty
#   security/suspicious/{id}/{autoId}   leaf deleted when timestamp <= cutoff
#   tokenUsage/{agent}/{period}/{start} only with quota_bucket_max_age_ms set;
#                                       deleted once the whole bucket is older
#
# Block-list entries, suspensions, alerts and escalation markers are never
# swept.

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from ..core.clock import Clock, now_ms
from ..core.config import DAY_MS, HOUR_MS, RetentionPolicy
from ..limits.sliding_window import prune
from ..store import paths
from ..store.base import KeyValueStore

logger = logging.getLogger(__name__)

_BUCKET_PERIODS = {paths.HOURLY: HOUR_MS, paths.DAILY: DAY_MS}


@dataclass
class SweepReport:
    started_at: int
    rate_timestamps_removed: int = 0
    rate_keys_deleted: int = 0
    suspicious_removed: int = 0
    quota_buckets_removed: int = 0

    @property
    def total_removed(self) -> int:
        return (
            self.rate_timestamps_removed
            + self.suspicious_removed
            + self.quota_buckets_removed
        )


class RetentionSweeper:
    """Age out rate-window and suspicious-activity state.

    ``sweep()`` runs one pass; ``start()``/``stop()`` manage a background
    task that sweeps every ``policy.interval_seconds``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: RetentionPolicy,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._policy = policy
        self._audit = audit or AuditLogger()
        self._clock = clock or now_ms
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_report: Optional[SweepReport] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self):
        """Start the sweep loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Retention sweeper started (interval=%ss, max_age=%dms)",
            self._policy.interval_seconds,
            self._policy.max_age_ms,
        )

    async def stop(self):
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Retention sweeper stopped")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_report(self) -> Optional[SweepReport]:
        return self._last_report

    async def _sweep_loop(self):
        while self._running:
            await asyncio.sleep(self._policy.interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Retention sweep failed")

    # ── Sweep ────────────────────────────────────────────────────────

    async def sweep(self) -> SweepReport:
        """Run one retention pass over every swept family."""
        now = self._clock()
        report = SweepReport(started_at=now)

        await self._sweep_rate_windows(now, report)
        await self._sweep_suspicious(now, report)
        if self._policy.quota_bucket_max_age_ms is not None:
            await self._sweep_quota_buckets(now, report)

        self._last_report = report
        self._audit.log_event(
            EventType.RETENTION_SWEEP,
            EventSeverity.INFO,
            f"Retention sweep removed {report.total_removed} entries",
            details={
                "rate_timestamps_removed": report.rate_timestamps_removed,
                "rate_keys_deleted": report.rate_keys_deleted,
                "suspicious_removed": report.suspicious_removed,
                "quota_buckets_removed": report.quota_buckets_removed,
            },
        )
        return report

    async def _sweep_rate_windows(self, now: int, report: SweepReport) -> None:
        for path in await self._store.scan(paths.RATE_LIMITS_ROOT):
            # Re-read under the lock: a request may have appended since the scan
            async with self._store.lock(path):
                stored = await self._store.get(path)
                if stored is None:
                    continue
                kept = prune(stored, now, self._policy.max_age_ms)
                removed = len(stored) - len(kept)
                if not kept:
                    await self._store.delete(path)
                    report.rate_keys_deleted += 1
                elif removed:
                    await self._store.set(path, kept)
                report.rate_timestamps_removed += removed

    async def _sweep_suspicious(self, now: int, report: SweepReport) -> None:
        cutoff = now - self._policy.max_age_ms
        for path, doc in (await self._store.scan(paths.SUSPICIOUS_ROOT)).items():
            timestamp = doc.get("timestamp") if isinstance(doc, dict) else None
            if not isinstance(timestamp, (int, float)):
                logger.warning("Suspicious-activity record %s has no timestamp", path)
                continue
            if timestamp <= cutoff:
                await self._store.delete(path)
                report.suspicious_removed += 1

    async def _sweep_quota_buckets(self, now: int, report: SweepReport) -> None:
        cutoff = now - self._policy.quota_bucket_max_age_ms
        for path in await self._store.scan(paths.TOKEN_USAGE_ROOT):
            parts = path.split("/")
            period = _BUCKET_PERIODS.get(parts[-2]) if len(parts) >= 2 else None
            try:
                start = int(parts[-1])
            except ValueError:
                start = None
            if period is None or start is None:
                logger.warning("Unrecognised quota bucket path %s", path)
                continue
            if start + period <= cutoff:
                async with self._store.lock(path):
                    await self._store.delete(path)
                report.quota_buckets_removed += 1
