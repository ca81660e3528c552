"""Suspicious-activity tracking, escalation and retention."""

from .activity_monitor import ActivityMonitor, ActivityOutcome
from .escalation import DispatchResult, EscalationContext, EscalationDispatcher
from .models import (
    ActivityKind,
    AlertRecord,
    BlockedAccess,
    BotTraffic,
    EscalationState,
    ManualReport,
    MonitoringMarker,
    QuotaExceeded,
    RapidRequests,
    RateLimitExceeded,
    SuspensionEntry,
    SuspiciousActivityRecord,
)
from .retention import RetentionSweeper, SweepReport
from .stores import AlertLog, BlockListStore, EnhancedMonitoringStore, SuspensionStore

__all__ = [
    "ActivityKind",
    "ActivityMonitor",
    "ActivityOutcome",
    "AlertLog",
    "AlertRecord",
    "BlockListStore",
    "BlockedAccess",
    "BotTraffic",
    "DispatchResult",
    "EnhancedMonitoringStore",
    "EscalationContext",
    "EscalationDispatcher",
    "EscalationState",
    "ManualReport",
    "MonitoringMarker",
    "QuotaExceeded",
    "RapidRequests",
    "RateLimitExceeded",
    "RetentionSweeper",
    "SuspensionEntry",
    "SuspensionStore",
    "SuspiciousActivityRecord",
    "SweepReport",
]
