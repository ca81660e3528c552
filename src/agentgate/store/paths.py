# Logical path namespace for admission-control state.
#
# Every path is independently addressable and independently writable.
# Identifiers are quoted so a caller-supplied "/" can never escape its slot.

from urllib.parse import quote, unquote

RATE_LIMITS_ROOT = "rateLimits"
TOKEN_USAGE_ROOT = "tokenUsage"
SUSPICIOUS_ROOT = "security/suspicious"
BLOCKED_PATH = "security/blockedIPs"
SUSPENDED_ROOT = "security/suspendedAgents"
ALERTS_ROOT = "security/alerts"
MONITORING_ROOT = "security/enhancedMonitoring"
ESCALATIONS_ROOT = "security/escalations"

HOURLY = "hourly"
DAILY = "daily"


def segment(value: str) -> str:
    """Quote one caller-supplied path segment."""
    return quote(str(value), safe="")


def unsegment(value: str) -> str:
    return unquote(value)


def join(*parts: str) -> str:
    return "/".join(parts)


def rate_window(identifier: str, category: str) -> str:
    return join(RATE_LIMITS_ROOT, segment(identifier), category)


def hourly_usage(agent_id: str, bucket_start: int) -> str:
    return join(TOKEN_USAGE_ROOT, segment(agent_id), HOURLY, str(bucket_start))


def daily_usage(agent_id: str, bucket_start: int) -> str:
    return join(TOKEN_USAGE_ROOT, segment(agent_id), DAILY, str(bucket_start))


def suspicious(identifier: str) -> str:
    return join(SUSPICIOUS_ROOT, segment(identifier))


def suspension(agent_id: str) -> str:
    return join(SUSPENDED_ROOT, segment(agent_id))


def monitoring(identifier: str) -> str:
    return join(MONITORING_ROOT, segment(identifier))


def escalation(identifier: str) -> str:
    return join(ESCALATIONS_ROOT, segment(identifier))
