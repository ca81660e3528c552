# Security audit logging
#
# Structured, append-only record of every admission-control decision that an
# operator may need to review: denials, escalations, block/suspend actions,
# store outages and indeterminate quota updates.
#
# Module-level diagnostics use stdlib logging; audit events go through
# structlog so they render as one JSON object per line.

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Kinds of audited admission-control events."""

    # Admission
    RATE_LIMITED = "admission.rate_limited"
    QUOTA_EXCEEDED = "admission.quota_exceeded"
    QUOTA_INDETERMINATE = "admission.quota_indeterminate"
    BLOCKED_ACCESS = "admission.blocked"
    SUSPENDED_ACCESS = "admission.suspended"
    STORE_UNAVAILABLE = "admission.store_unavailable"

    # Escalation
    SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    ESCALATION_TRIGGERED = "security.escalation.triggered"
    ESCALATION_CLEARED = "security.escalation.cleared"
    IDENTIFIER_BLOCKED = "security.blocked"
    IDENTIFIER_UNBLOCKED = "security.unblocked"
    AGENT_SUSPENDED = "security.agent.suspended"
    AGENT_REINSTATED = "security.agent.reinstated"
    ALERT_RAISED = "security.alert"
    MONITORING_ENABLED = "security.monitoring.enabled"

    # Maintenance
    RETENTION_SWEEP = "maintenance.retention_sweep"


class EventSeverity(str, Enum):
    """
    Severity levels for audited events.

    - INFO: routine decision, logged only
    - INVESTIGATE: worth a look (denials, suspicious reports)
    - ALERT: an automatic action was taken (block, suspend, escalation)
    - CRITICAL: needs an operator (indeterminate quota, store outage)
    """

    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


_LEVELS = {
    EventSeverity.INFO: logging.INFO,
    EventSeverity.INVESTIGATE: logging.INFO,
    EventSeverity.ALERT: logging.WARNING,
    EventSeverity.CRITICAL: logging.ERROR,
}


def configure_logging(
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
) -> None:
    """Install the structlog processor chain used for audit events.

    Call once at service startup. When ``log_dir`` is given, events are also
    appended to a daily ``audit_YYYY-MM-DD.log`` file.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(
            log_dir / f"audit_{today}.log", mode="a", encoding="utf-8"
        )
        file_handler.setLevel(level)
        # structlog renders the JSON line itself
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)


class AuditLogger:
    """
    Append-only audit trail for admission-control decisions.

    One instance is created per service and handed to each component, so
    tests can substitute their own without touching global state.
    """

    def __init__(self, name: str = "agentgate.audit"):
        self.logger = structlog.get_logger(name)

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        identifier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Record one audit event.

        Args:
            event_type: Kind of event (from EventType)
            severity: Severity level (from EventSeverity)
            message: Human-readable description
            identifier: Caller or agent the event concerns
            details: Additional structured context

        Returns:
            str: Event ID (UUID) for cross-referencing
        """
        event_id = str(uuid4())
        self.logger.log(
            _LEVELS[severity],
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            identifier=identifier,
            details=details or {},
        )
        return event_id
