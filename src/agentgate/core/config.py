# Security configuration
#
# Loaded once at startup, immutable afterwards. Every component receives the
# SecurityConfig (or one of its policies) through its constructor; nothing
# reads configuration from process-wide state at request time.
#
# JSON documents may use the original camelCase keys (windowMs,
# maxInputTokensPerHour, ...) or snake_case.

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENTGATE_CONFIG"
FAIL_OPEN_ENV_VAR = "AGENTGATE_FAIL_OPEN"
STORE_TIMEOUT_ENV_VAR = "AGENTGATE_STORE_TIMEOUT_SECONDS"

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


class RateCategory(str, Enum):
    """Resource categories with their own sliding-window policy."""

    API = "api"
    AGENTS = "agents"
    MESSAGES = "messages"


class EscalationAction(str, Enum):
    """Fixed set of responses to a suspicious-activity threshold breach."""

    BLOCK_IP = "block_ip"
    SUSPEND_AGENT = "suspend_agent"
    ALERT_ADMIN = "alert_admin"
    INCREASE_MONITORING = "increase_monitoring"


class _Policy(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RateLimitPolicy(_Policy):
    """At most ``max`` operations per rolling ``window_ms``."""

    window_ms: int = Field(..., gt=0)
    max: int = Field(..., gt=0)
    message: str = "Too many requests"


class RateLimitPolicies(_Policy):
    api: RateLimitPolicy = RateLimitPolicy(
        window_ms=15 * MINUTE_MS, max=100, message="Too many API requests"
    )
    agents: RateLimitPolicy = RateLimitPolicy(
        window_ms=MINUTE_MS, max=10, message="Too many agent operations"
    )
    messages: RateLimitPolicy = RateLimitPolicy(
        window_ms=MINUTE_MS, max=50, message="Too many messages"
    )

    def for_category(self, category: RateCategory) -> RateLimitPolicy:
        return getattr(self, RateCategory(category).value)


class TokenLimitPolicy(_Policy):
    max_input_tokens_per_hour: float = Field(50_000, gt=0)
    max_output_tokens_per_hour: float = Field(25_000, gt=0)
    max_cost_per_day: float = Field(100, gt=0)


class SuspiciousActivityPolicy(_Policy):
    """Escalate once ``threshold`` reports land inside ``window_ms``."""

    threshold: int = Field(5, gt=0)
    actions: Tuple[EscalationAction, ...] = (
        EscalationAction.ALERT_ADMIN,
        EscalationAction.INCREASE_MONITORING,
    )
    window_ms: int = Field(HOUR_MS, gt=0)
    # Report rate/quota denials from AdmissionController as suspicious activity
    report_denials: bool = False

    @field_validator("actions")
    @classmethod
    def _actions_unique(cls, actions):
        seen = set()
        for action in actions:
            if action in seen:
                raise ValueError(f"duplicate escalation action: {action.value}")
            seen.add(action)
        return actions


class ResiliencePolicy(_Policy):
    """Store call timeout/retry budget and the degraded-mode default."""

    timeout_seconds: float = Field(2.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    initial_backoff_seconds: float = Field(0.1, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    fail_open: bool = False


class RetentionPolicy(_Policy):
    max_age_ms: int = Field(DAY_MS, gt=0)
    interval_seconds: float = Field(3600, gt=0)
    # None keeps quota buckets forever (they age out by key)
    quota_bucket_max_age_ms: Optional[int] = Field(None, gt=0)


class SecurityConfig(_Policy):
    rate_limits: RateLimitPolicies = Field(default_factory=RateLimitPolicies)
    token_limits: TokenLimitPolicy = Field(default_factory=TokenLimitPolicy)
    suspicious_activity: SuspiciousActivityPolicy = Field(
        default_factory=SuspiciousActivityPolicy
    )
    blocked_identifiers: Tuple[str, ...] = ()
    resilience: ResiliencePolicy = Field(default_factory=ResiliencePolicy)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    monitoring_duration_ms: int = Field(DAY_MS, gt=0)


DEFAULT_SECURITY_CONFIG = SecurityConfig()


# ── Loading ──────────────────────────────────────────────────────────


def parse_security_config(data: Mapping[str, Any]) -> SecurityConfig:
    """Validate a mapping into a SecurityConfig.

    Raises:
        InvalidConfiguration: unknown action names, non-positive limits,
            zero windows, duplicate actions or unknown keys.
    """
    try:
        return SecurityConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise InvalidConfiguration(_describe(exc)) from exc


def load_security_config(path: Optional[str] = None) -> SecurityConfig:
    """Load the security configuration once at startup.

    Resolution order: explicit ``path``, then ``$AGENTGATE_CONFIG``, then the
    built-in defaults. ``AGENTGATE_FAIL_OPEN`` and
    ``AGENTGATE_STORE_TIMEOUT_SECONDS`` override the resilience policy.
    A ``.env`` file is honoured but never overrides the real environment.
    """
    load_dotenv(override=False)

    path = path or os.environ.get(CONFIG_ENV_VAR)
    data: Dict[str, Any] = {}
    if path:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise InvalidConfiguration(
                f"Cannot read security config {path}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise InvalidConfiguration(
                f"Security config {path} must contain a JSON object"
            )

    config = parse_security_config(data)
    config = _apply_env_overrides(config)
    logger.info(
        "Security config loaded (source=%s, threshold=%d, actions=%s, fail_open=%s)",
        path or "defaults",
        config.suspicious_activity.threshold,
        ",".join(a.value for a in config.suspicious_activity.actions),
        config.resilience.fail_open,
    )
    return config


def _apply_env_overrides(config: SecurityConfig) -> SecurityConfig:
    overrides: Dict[str, Any] = {}

    raw = os.environ.get(FAIL_OPEN_ENV_VAR)
    if raw is not None:
        overrides["fail_open"] = _parse_bool(FAIL_OPEN_ENV_VAR, raw)

    raw = os.environ.get(STORE_TIMEOUT_ENV_VAR)
    if raw is not None:
        overrides["timeout_seconds"] = raw

    if not overrides:
        return config

    try:
        resilience = ResiliencePolicy.model_validate(
            {**config.resilience.model_dump(), **overrides}
        )
    except ValidationError as exc:
        raise InvalidConfiguration(_describe(exc)) from exc
    return config.model_copy(update={"resilience": resilience})


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise InvalidConfiguration(f"{name} must be a boolean, got {raw!r}")


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc or '<root>'}: {err.get('msg', 'invalid')}")
    return "Invalid security configuration: " + "; ".join(parts)
