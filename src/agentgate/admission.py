# Admission controller
#
# One service object wiring every admission-control component from an
# immutable SecurityConfig and a store handle. Per request:
#
#   1. screen      block list (identifier), then suspension (agent_id)
#   2. rate        SlidingWindowLimiter for (identifier, category)
#   3. quota       QuotaTracker, only when a token/cost delta is supplied
#
# A denial at any step short-circuits the rest, so blocked or suspended
# callers never consume rate slots or quota.
#
# Every component shares one ResilientStore, so each single store primitive
# gets the timeout and bounded retries; a rate check or quota consumption is
# never re-run as a whole. Once a primitive's retries are exhausted the
# request is denied with store-unavailable (fail-closed) unless
# resilience.fail_open is set, in which case it is admitted and flagged
# degraded. Store faults never escape admit()/screen().

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from .core.audit_log import AuditLogger, EventSeverity, EventType
from .core.clock import Clock, now_ms
from .core.config import RateCategory, SecurityConfig
from .core.errors import PartialUpdateFailure, StoreUnavailable
from .limits.quota import QuotaDecision, QuotaTracker, TokenUsage
from .limits.sliding_window import RateLimitDecision, SlidingWindowLimiter
from .security.activity_monitor import ActivityMonitor, ActivityOutcome
from .security.escalation import EscalationDispatcher
from .security.models import ActivityKind, QuotaExceeded, RateLimitExceeded
from .security.retention import RetentionSweeper
from .security.stores import (
    AlertLog,
    BlockListStore,
    EnhancedMonitoringStore,
    SuspensionStore,
)
from .store.base import KeyValueStore
from .store.resilient import ResilientStore, describe_error

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    BLOCKED = "blocked"
    SUSPENDED = "suspended"
    RATE_LIMITED = "rate-limited"
    QUOTA_EXCEEDED = "quota-exceeded"
    QUOTA_INDETERMINATE = "quota-indeterminate"
    STORE_UNAVAILABLE = "store-unavailable"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission request.

    ``degraded`` marks decisions taken without a working store: a fail-open
    admission or a fail-closed store-unavailable denial.
    """

    allowed: bool
    reason: Optional[DenialReason] = None
    rate: Optional[RateLimitDecision] = None
    quota: Optional[QuotaDecision] = None
    degraded: bool = False
    message: str = ""


ALLOWED = AdmissionDecision(allowed=True)


class AdmissionController:
    """Admission control for one service instance.

    Args:
        config: Validated, immutable security configuration.
        store: Shared key-value store; wrapped in a ResilientStore.
        clock: Millisecond clock handed to every component.
        audit: Audit logger handed to every component.
    """

    def __init__(
        self,
        config: SecurityConfig,
        store: KeyValueStore,
        clock: Optional[Clock] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.config = config
        store = ResilientStore(store, config.resilience)
        self.store = store
        self._clock = clock or now_ms
        self._audit = audit or AuditLogger()

        self.block_list = BlockListStore(
            store, static_blocklist=config.blocked_identifiers, audit=self._audit
        )
        self.suspensions = SuspensionStore(store, audit=self._audit, clock=self._clock)
        self.monitoring = EnhancedMonitoringStore(
            store,
            default_duration_ms=config.monitoring_duration_ms,
            audit=self._audit,
            clock=self._clock,
        )
        self.alerts = AlertLog(store, audit=self._audit, clock=self._clock)
        self.dispatcher = EscalationDispatcher(
            config.suspicious_activity.actions,
            block_list=self.block_list,
            suspensions=self.suspensions,
            monitoring=self.monitoring,
            alerts=self.alerts,
            audit=self._audit,
        )
        self.activity = ActivityMonitor(
            store,
            config.suspicious_activity,
            self.dispatcher,
            audit=self._audit,
            clock=self._clock,
        )
        self.limiter = SlidingWindowLimiter(store, config.rate_limits, clock=self._clock)
        self.quota = QuotaTracker(store, config.token_limits, clock=self._clock)
        self.sweeper = RetentionSweeper(
            store, config.retention, audit=self._audit, clock=self._clock
        )

    def now(self) -> int:
        return self._clock()

    # ── Admission ────────────────────────────────────────────────────

    async def screen(
        self, identifier: str, agent_id: Optional[str] = None
    ) -> AdmissionDecision:
        """Block-list and suspension checks only; nothing is recorded."""
        try:
            denied = await self._screen(identifier, agent_id)
        except StoreUnavailable as exc:
            return self._store_unavailable(identifier, "screen", exc)
        return denied or ALLOWED

    async def admit(
        self,
        identifier: str,
        category: Union[RateCategory, str] = RateCategory.API,
        agent_id: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
    ) -> AdmissionDecision:
        """Admit one operation of ``category`` for ``identifier``.

        Args:
            identifier: Rate-limit subject (client address or agent id).
            category: Rate category of the operation.
            agent_id: Agent performing the operation; checked for suspension
                and charged for ``usage``.
            usage: Token/cost delta to charge against the agent's quota.
        """
        category = RateCategory(category)
        try:
            denied = await self._screen(identifier, agent_id)
            if denied:
                return denied

            rate = await self.limiter.check_and_record(identifier, category)
            if not rate.allowed:
                return await self._rate_denied(identifier, category, rate)

            if usage is None:
                return AdmissionDecision(allowed=True, rate=rate)

            quota_subject = agent_id or identifier
            try:
                quota = await self.quota.consume(quota_subject, usage)
            except PartialUpdateFailure as exc:
                self._audit.log_event(
                    EventType.QUOTA_INDETERMINATE,
                    EventSeverity.CRITICAL,
                    str(exc),
                    identifier=quota_subject,
                    details={
                        "committed_path": exc.committed_path,
                        "failed_path": exc.failed_path,
                        "deltas": exc.deltas,
                    },
                )
                return AdmissionDecision(
                    allowed=False,
                    reason=DenialReason.QUOTA_INDETERMINATE,
                    rate=rate,
                    message="Quota state is indeterminate",
                )
            if not quota.allowed:
                return await self._quota_denied(quota_subject, rate, quota)

            return AdmissionDecision(allowed=True, rate=rate, quota=quota)
        except StoreUnavailable as exc:
            return self._store_unavailable(identifier, "admit", exc)

    async def peek_rate(
        self, identifier: str, category: Union[RateCategory, str] = RateCategory.API
    ) -> RateLimitDecision:
        """Read-only rate window view; raises StoreUnavailable after retries."""
        return await self.limiter.peek(identifier, RateCategory(category))

    async def report_suspicious_activity(
        self,
        identifier: str,
        activity: Union[ActivityKind, str],
        metadata: Optional[Any] = None,
    ) -> ActivityOutcome:
        return await self.activity.record_suspicious_activity(
            identifier, activity, metadata
        )

    # ── Internals ────────────────────────────────────────────────────

    async def _screen(
        self, identifier: str, agent_id: Optional[str]
    ) -> Optional[AdmissionDecision]:
        if await self.block_list.is_blocked(identifier):
            self._audit.log_event(
                EventType.BLOCKED_ACCESS,
                EventSeverity.INVESTIGATE,
                f"Denied blocked caller {identifier}",
                identifier=identifier,
            )
            return AdmissionDecision(
                allowed=False, reason=DenialReason.BLOCKED, message="Access denied"
            )

        if agent_id is not None and await self.suspensions.is_suspended(agent_id):
            self._audit.log_event(
                EventType.SUSPENDED_ACCESS,
                EventSeverity.INVESTIGATE,
                f"Denied suspended agent {agent_id}",
                identifier=agent_id,
                details={"caller": identifier},
            )
            return AdmissionDecision(
                allowed=False, reason=DenialReason.SUSPENDED, message="Agent suspended"
            )
        return None

    async def _rate_denied(
        self, identifier: str, category: RateCategory, rate: RateLimitDecision
    ) -> AdmissionDecision:
        self._audit.log_event(
            EventType.RATE_LIMITED,
            EventSeverity.INVESTIGATE,
            f"Rate limit hit for {identifier} ({category.value})",
            identifier=identifier,
            details={"limit": rate.limit, "reset_time": rate.reset_time},
        )
        await self._report_denial(
            identifier,
            ActivityKind.RATE_LIMIT_EXCEEDED,
            RateLimitExceeded(category=category, reset_time=rate.reset_time),
        )
        return AdmissionDecision(
            allowed=False,
            reason=DenialReason.RATE_LIMITED,
            rate=rate,
            message=self.limiter.policy(category).message,
        )

    async def _quota_denied(
        self, agent_id: str, rate: RateLimitDecision, quota: QuotaDecision
    ) -> AdmissionDecision:
        self._audit.log_event(
            EventType.QUOTA_EXCEEDED,
            EventSeverity.INVESTIGATE,
            f"Quota exceeded for {agent_id}: {quota.reason.value}",
            identifier=agent_id,
            details={"reason": quota.reason.value},
        )
        await self._report_denial(
            agent_id, ActivityKind.QUOTA_EXCEEDED, QuotaExceeded(reason=quota.reason)
        )
        return AdmissionDecision(
            allowed=False,
            reason=DenialReason.QUOTA_EXCEEDED,
            rate=rate,
            quota=quota,
            message=f"Quota exceeded ({quota.reason.value})",
        )

    async def _report_denial(self, identifier: str, activity: ActivityKind, metadata) -> None:
        if not self.config.suspicious_activity.report_denials:
            return
        try:
            await self.activity.record_suspicious_activity(identifier, activity, metadata)
        except Exception:
            # The denial stands regardless of whether the report landed
            logger.warning(
                "Failed to report %s for %s", activity.value, identifier, exc_info=True
            )

    def _store_unavailable(
        self, identifier: str, operation: str, exc: StoreUnavailable
    ) -> AdmissionDecision:
        fail_open = self.config.resilience.fail_open
        self._audit.log_event(
            EventType.STORE_UNAVAILABLE,
            EventSeverity.CRITICAL,
            f"Store unavailable during {operation}; "
            f"{'admitting' if fail_open else 'denying'} {identifier}",
            identifier=identifier,
            details={"error": describe_error(exc), "fail_open": fail_open},
        )
        if fail_open:
            return AdmissionDecision(allowed=True, degraded=True)
        return AdmissionDecision(
            allowed=False,
            reason=DenialReason.STORE_UNAVAILABLE,
            degraded=True,
            message="Service temporarily unavailable",
        )

