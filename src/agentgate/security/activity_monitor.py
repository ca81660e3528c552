# Suspicious-activity monitor
#
# Every report is appended as its own leaf under
# security/suspicious/{identifier}/{autoId}. Escalation is evaluated after
# the append, under the identifier's escalation lock:
#
#   count = records with timestamp > now - window   (window = 1h)
#   Normal    + count >= threshold  ->  dispatch actions, then Escalated
#   Escalated + anything            ->  no-op (never reverts on its own)
#
# The Escalated marker is written only after every action succeeded, so a
# failed dispatch leaves the identifier Normal and the next report retries.
# Holding the lock across recount, dispatch and marker write guarantees one
# Normal -> Escalated transition under concurrent reports.

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from ..core.clock import Clock, now_ms
from ..core.config import SuspiciousActivityPolicy
from ..store import paths
from ..store.base import KeyValueStore
from .escalation import EscalationContext, EscalationDispatcher
from .models import (
    METADATA_TYPES,
    ActivityKind,
    EscalationState,
    SuspiciousActivityRecord,
    default_metadata,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityOutcome:
    """Result of one suspicious-activity report."""

    recent_count: int
    escalated: bool
    # True only for the report that caused the Normal -> Escalated transition
    triggered: bool = False


class ActivityMonitor:
    """Record suspicious activity and escalate at the configured threshold.

    Args:
        store: Key-value store holding records and escalation state.
        policy: Threshold, window and ordered actions.
        dispatcher: Runs the escalation actions.
        clock: Millisecond clock (defaults to wall time).
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: SuspiciousActivityPolicy,
        dispatcher: EscalationDispatcher,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._policy = policy
        self._dispatcher = dispatcher
        self._audit = audit or AuditLogger()
        self._clock = clock or now_ms

    async def record_suspicious_activity(
        self,
        identifier: str,
        activity: Union[ActivityKind, str],
        metadata: Optional[Any] = None,
    ) -> ActivityOutcome:
        """Append one report and escalate if the threshold is reached.

        Args:
            identifier: Caller the report concerns (address or agent id).
            activity: One of ActivityKind.
            metadata: Matching metadata model, a mapping of its fields, or
                None for an empty payload.

        Raises:
            ValueError: unknown activity or metadata of another kind.
            StoreUnavailable / escalation handler errors: propagate; the
                identifier then stays Normal.
        """
        kind = ActivityKind(activity)
        record = SuspiciousActivityRecord(
            activity=kind,
            timestamp=self._clock(),
            metadata=_coerce_metadata(kind, metadata),
        )
        await self._store.append(paths.suspicious(identifier), record.to_document())

        self._audit.log_event(
            EventType.SUSPICIOUS_ACTIVITY,
            EventSeverity.INVESTIGATE,
            f"Suspicious activity {kind.value} from {identifier}",
            identifier=identifier,
            details=record.metadata.to_document(),
        )

        escalation_path = paths.escalation(identifier)
        async with self._store.lock(escalation_path):
            recent = await self.recent_activity(identifier)
            count = len(recent)

            state = await self._store.get(escalation_path)
            if state and state.get("escalated"):
                return ActivityOutcome(recent_count=count, escalated=True)

            if count < self._policy.threshold:
                return ActivityOutcome(recent_count=count, escalated=False)

            logger.warning(
                "Suspicious activity threshold reached for %s (%d >= %d)",
                identifier, count, self._policy.threshold,
            )
            await self._dispatcher.dispatch(
                EscalationContext(
                    identifier=identifier,
                    activities=tuple(recent),
                    trigger_count=count,
                )
            )
            marker = EscalationState(
                escalated=True, timestamp=self._clock(), trigger_count=count
            )
            await self._store.set(escalation_path, marker.to_document())

        return ActivityOutcome(recent_count=count, escalated=True, triggered=True)

    async def recent_activity(self, identifier: str) -> List[SuspiciousActivityRecord]:
        """Records inside the trailing window, oldest first."""
        cutoff = self._clock() - self._policy.window_ms
        docs = await self._store.scan(paths.suspicious(identifier))
        records = []
        for path, doc in docs.items():
            try:
                record = SuspiciousActivityRecord.from_document(doc)
            except ValueError:
                logger.warning("Skipping malformed suspicious-activity record %s", path)
                continue
            if record.timestamp > cutoff:
                records.append(record)
        records.sort(key=lambda r: r.timestamp)
        return records

    async def is_escalated(self, identifier: str) -> bool:
        state = await self._store.get(paths.escalation(identifier))
        return bool(state) and state.get("escalated") is True

    async def deescalate(self, identifier: str, clear_history: bool = True) -> bool:
        """Administrative return to Normal.

        With ``clear_history`` the identifier's suspicious records are also
        removed, so the next report does not immediately re-escalate.
        Block-list entries, suspensions and monitoring markers are left alone.

        Returns:
            True if the identifier was Escalated.
        """
        escalation_path = paths.escalation(identifier)
        async with self._store.lock(escalation_path):
            was_escalated = await self.is_escalated(identifier)
            await self._store.delete(escalation_path)
            if clear_history:
                for path in await self._store.scan(paths.suspicious(identifier)):
                    await self._store.delete(path)

        if was_escalated:
            self._audit.log_event(
                EventType.ESCALATION_CLEARED,
                EventSeverity.INFO,
                f"De-escalated {identifier}",
                identifier=identifier,
                details={"history_cleared": clear_history},
            )
        return was_escalated


def _coerce_metadata(kind: ActivityKind, metadata: Any):
    model = METADATA_TYPES[kind]
    if metadata is None:
        return default_metadata(kind)
    if isinstance(metadata, model):
        return metadata
    if isinstance(metadata, Mapping):
        return model.model_validate({**metadata, "kind": kind.value})
    raise ValueError(
        f"metadata for {kind.value} must be {model.__name__} or a mapping, "
        f"got {type(metadata).__name__}"
    )
