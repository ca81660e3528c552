# Core module: configuration, errors and audit logging shared by every
# admission-control component.

from .audit_log import AuditLogger, EventSeverity, EventType, configure_logging
from .config import (
    DEFAULT_SECURITY_CONFIG,
    EscalationAction,
    RateCategory,
    RateLimitPolicy,
    SecurityConfig,
    load_security_config,
    parse_security_config,
)
from .errors import (
    AgentGateError,
    InvalidConfiguration,
    PartialUpdateFailure,
    StoreUnavailable,
    WriteIndeterminate,
)

__all__ = [
    # Configuration
    "DEFAULT_SECURITY_CONFIG",
    "EscalationAction",
    "RateCategory",
    "RateLimitPolicy",
    "SecurityConfig",
    "load_security_config",
    "parse_security_config",
    # Errors
    "AgentGateError",
    "InvalidConfiguration",
    "PartialUpdateFailure",
    "StoreUnavailable",
    "WriteIndeterminate",
    # Audit logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_logging",
]
