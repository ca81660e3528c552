# Escalation dispatcher
#
# Maps each EscalationAction to one async handler. The registry is checked
# against the full enumeration at construction, so an action without a
# handler is a startup error rather than a silent no-op at request time.
#
# Configured actions run sequentially in configured order. Every handler is
# idempotent (set-add, upsert, append), so a retried escalation after a
# partial failure never double-blocks or double-suspends.

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from ..core.config import EscalationAction
from ..core.errors import InvalidConfiguration
from .models import SuspiciousActivityRecord
from .stores import (
    SUSPICIOUS_ACTIVITY_REASON,
    AlertLog,
    BlockListStore,
    EnhancedMonitoringStore,
    SuspensionStore,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationContext:
    """What a handler gets to act on."""

    identifier: str
    activities: Tuple[SuspiciousActivityRecord, ...] = ()
    trigger_count: int = 0


ActionHandler = Callable[[EscalationContext], Awaitable[None]]


@dataclass
class DispatchResult:
    identifier: str
    executed: List[EscalationAction] = field(default_factory=list)


class EscalationDispatcher:
    """Run the configured escalation actions for one identifier.

    Args:
        actions: Ordered, duplicate-free actions to run on escalation.
        block_list / suspensions / monitoring / alerts: Targets of the
            built-in handlers.
        handlers: Optional overrides merged over the built-in registry.
    """

    def __init__(
        self,
        actions: Sequence[EscalationAction],
        block_list: BlockListStore,
        suspensions: SuspensionStore,
        monitoring: EnhancedMonitoringStore,
        alerts: AlertLog,
        audit: Optional[AuditLogger] = None,
        handlers: Optional[Dict[EscalationAction, ActionHandler]] = None,
    ):
        self._block_list = block_list
        self._suspensions = suspensions
        self._monitoring = monitoring
        self._alerts = alerts
        self._audit = audit or AuditLogger()

        self.action_handlers = self._initialize_action_handlers()
        if handlers:
            self.action_handlers.update(handlers)

        missing = [a.value for a in EscalationAction if a not in self.action_handlers]
        if missing:
            raise InvalidConfiguration(
                f"No escalation handler for: {', '.join(missing)}"
            )

        try:
            self.actions = tuple(EscalationAction(a) for a in actions)
        except ValueError as exc:
            raise InvalidConfiguration(str(exc)) from exc
        if len(set(self.actions)) != len(self.actions):
            raise InvalidConfiguration("Escalation actions must not repeat")

    def _initialize_action_handlers(self) -> Dict[EscalationAction, ActionHandler]:
        return {
            EscalationAction.BLOCK_IP: self._block_ip,
            EscalationAction.SUSPEND_AGENT: self._suspend_agent,
            EscalationAction.ALERT_ADMIN: self._alert_admin,
            EscalationAction.INCREASE_MONITORING: self._increase_monitoring,
        }

    async def dispatch(self, context: EscalationContext) -> DispatchResult:
        """Run every configured action in order.

        The first handler failure propagates; actions after it are not run.
        """
        result = DispatchResult(identifier=context.identifier)
        for action in self.actions:
            handler = self.action_handlers[action]
            try:
                await handler(context)
            except Exception:
                logger.error(
                    "Escalation action %s failed for %s after %s",
                    action.value,
                    context.identifier,
                    [a.value for a in result.executed],
                )
                raise
            result.executed.append(action)

        self._audit.log_event(
            EventType.ESCALATION_TRIGGERED,
            EventSeverity.ALERT,
            f"Escalated {context.identifier} after {context.trigger_count} reports",
            identifier=context.identifier,
            details={
                "actions": [a.value for a in result.executed],
                "trigger_count": context.trigger_count,
            },
        )
        return result

    # ── Built-in handlers ───────────────────────────────────────────

    async def _block_ip(self, context: EscalationContext) -> None:
        await self._block_list.block(context.identifier)

    async def _suspend_agent(self, context: EscalationContext) -> None:
        await self._suspensions.suspend(context.identifier, SUSPICIOUS_ACTIVITY_REASON)

    async def _alert_admin(self, context: EscalationContext) -> None:
        await self._alerts.raise_alert(context.identifier, context.activities)

    async def _increase_monitoring(self, context: EscalationContext) -> None:
        await self._monitoring.enable(context.identifier)
