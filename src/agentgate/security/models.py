"""
Security record models.

Stored documents use camelCase keys so they match the path namespace
(``durationMs``, ``triggerCount``, ...). Activity metadata is a closed
tagged union keyed by ``kind``, one schema per activity descriptor:

    bot_traffic          user_agent, pathname, referer
    rapid_requests       pathname, remaining
    rate_limit_exceeded  category, reset_time
    quota_exceeded       reason
    blocked_access       pathname
    manual_report        note, reporter
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..core.config import RateCategory
from ..limits.quota import QuotaReason


class ActivityKind(str, Enum):
    BOT_TRAFFIC = "bot_traffic"
    RAPID_REQUESTS = "rapid_requests"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    QUOTA_EXCEEDED = "quota_exceeded"
    BLOCKED_ACCESS = "blocked_access"
    MANUAL_REPORT = "manual_report"


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible form for the store."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)


# ── Activity metadata variants ──────────────────────────────────────


class BotTraffic(_Record):
    kind: Literal["bot_traffic"] = "bot_traffic"
    user_agent: str = ""
    pathname: str = ""
    referer: str = ""


class RapidRequests(_Record):
    kind: Literal["rapid_requests"] = "rapid_requests"
    pathname: str = ""
    remaining: int = 0


class RateLimitExceeded(_Record):
    kind: Literal["rate_limit_exceeded"] = "rate_limit_exceeded"
    category: RateCategory = RateCategory.API
    reset_time: int = 0


class QuotaExceeded(_Record):
    kind: Literal["quota_exceeded"] = "quota_exceeded"
    reason: Optional[QuotaReason] = None


class BlockedAccess(_Record):
    kind: Literal["blocked_access"] = "blocked_access"
    pathname: str = ""


class ManualReport(_Record):
    kind: Literal["manual_report"] = "manual_report"
    note: str = ""
    reporter: str = ""


ActivityMetadata = Annotated[
    Union[
        BotTraffic,
        RapidRequests,
        RateLimitExceeded,
        QuotaExceeded,
        BlockedAccess,
        ManualReport,
    ],
    Field(discriminator="kind"),
]

METADATA_TYPES = {
    ActivityKind.BOT_TRAFFIC: BotTraffic,
    ActivityKind.RAPID_REQUESTS: RapidRequests,
    ActivityKind.RATE_LIMIT_EXCEEDED: RateLimitExceeded,
    ActivityKind.QUOTA_EXCEEDED: QuotaExceeded,
    ActivityKind.BLOCKED_ACCESS: BlockedAccess,
    ActivityKind.MANUAL_REPORT: ManualReport,
}


def default_metadata(kind: ActivityKind):
    """Empty metadata payload for ``kind``."""
    return METADATA_TYPES[ActivityKind(kind)]()


# ── Records ─────────────────────────────────────────────────────────


class SuspiciousActivityRecord(_Record):
    """One entry of security/suspicious/{identifier}/{autoId}."""

    activity: ActivityKind
    timestamp: int
    metadata: ActivityMetadata

    @model_validator(mode="after")
    def _metadata_matches_activity(self):
        if self.metadata.kind != self.activity.value:
            raise ValueError(
                f"metadata kind {self.metadata.kind!r} does not match "
                f"activity {self.activity.value!r}"
            )
        return self


class AlertRecord(_Record):
    """One entry of security/alerts/{autoId}."""

    identifier: str
    activities: Tuple[SuspiciousActivityRecord, ...] = ()
    timestamp: int
    severity: Literal["high"] = "high"
    message: str = ""


class SuspensionEntry(_Record):
    """security/suspendedAgents/{agentId}; last write wins."""

    suspended: bool
    timestamp: int
    reason: str = ""


class MonitoringMarker(_Record):
    """security/enhancedMonitoring/{identifier}; time-boxed."""

    enabled: bool
    timestamp: int
    duration_ms: int

    def active_at(self, now: int) -> bool:
        return self.enabled and now < self.timestamp + self.duration_ms


class EscalationState(_Record):
    """security/escalations/{identifier}; present once Escalated."""

    escalated: bool
    timestamp: int
    trigger_count: int = 0
