# agentgate: admission control and quota enforcement for multi-agent platforms
#
# Sliding-window rate limits, hourly/daily token and cost quotas, and
# suspicious-activity escalation (block, suspend, alert, monitor) on top of
# a shared asynchronous key-value store.

__version__ = "0.1.0"
__description__ = "Admission control and quota enforcement for multi-agent platforms"

from .admission import AdmissionController, AdmissionDecision, DenialReason
from .core import (
    DEFAULT_SECURITY_CONFIG,
    EscalationAction,
    EventSeverity,
    EventType,
    RateCategory,
    SecurityConfig,
    load_security_config,
)
from .limits import TokenUsage
from .security import ActivityKind
from .store import InMemoryStore, KeyValueStore, SQLiteStore

__all__ = [
    "__version__",
    "ActivityKind",
    "AdmissionController",
    "AdmissionDecision",
    "DEFAULT_SECURITY_CONFIG",
    "DenialReason",
    "EscalationAction",
    "EventSeverity",
    "EventType",
    "InMemoryStore",
    "KeyValueStore",
    "RateCategory",
    "SQLiteStore",
    "SecurityConfig",
    "TokenUsage",
    "load_security_config",
]
