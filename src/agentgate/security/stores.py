# Security membership and record stores
#
#   BlockListStore           security/blockedIPs (set, dedup on add, no expiry)
#   SuspensionStore          security/suspendedAgents/{agentId} (last write wins)
#   EnhancedMonitoringStore  security/enhancedMonitoring/{identifier} (time-boxed)
#   AlertLog                 security/alerts/{autoId} (append-only)
#
# is_blocked / is_suspended / is_monitored are pure reads and never write.

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from ..core.audit_log import AuditLogger, EventSeverity, EventType
from ..core.clock import Clock, now_ms
from ..core.config import DAY_MS
from ..store import paths
from ..store.base import KeyValueStore
from .models import AlertRecord, MonitoringMarker, SuspensionEntry, SuspiciousActivityRecord

logger = logging.getLogger(__name__)

SUSPICIOUS_ACTIVITY_REASON = "suspicious activity"


class BlockListStore:
    """Identifiers (typically network addresses) denied admission outright.

    Entries are cleared only administratively via ``unblock``. Identifiers
    in ``static_blocklist`` (from configuration) are always blocked.
    """

    def __init__(
        self,
        store: KeyValueStore,
        static_blocklist: Iterable[str] = (),
        audit: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._static = frozenset(static_blocklist)
        self._audit = audit or AuditLogger()

    async def is_blocked(self, identifier: str) -> bool:
        if identifier in self._static:
            return True
        return identifier in (await self._store.get(paths.BLOCKED_PATH) or [])

    async def blocked(self) -> List[str]:
        stored = await self._store.get(paths.BLOCKED_PATH) or []
        return sorted(set(stored) | self._static)

    async def block(self, identifier: str) -> bool:
        """Add ``identifier`` if absent. Returns True when newly added."""
        async with self._store.lock(paths.BLOCKED_PATH):
            stored = await self._store.get(paths.BLOCKED_PATH) or []
            if identifier in stored:
                return False
            stored.append(identifier)
            await self._store.set(paths.BLOCKED_PATH, stored)

        self._audit.log_event(
            EventType.IDENTIFIER_BLOCKED,
            EventSeverity.ALERT,
            f"Blocked {identifier}",
            identifier=identifier,
        )
        return True

    async def unblock(self, identifier: str) -> bool:
        """Remove ``identifier`` from the stored set. Returns True if it was present."""
        async with self._store.lock(paths.BLOCKED_PATH):
            stored = await self._store.get(paths.BLOCKED_PATH) or []
            if identifier not in stored:
                return False
            await self._store.set(
                paths.BLOCKED_PATH, [i for i in stored if i != identifier]
            )

        if identifier in self._static:
            logger.warning(
                "%s removed from stored block list but remains statically blocked",
                identifier,
            )
        self._audit.log_event(
            EventType.IDENTIFIER_UNBLOCKED,
            EventSeverity.INFO,
            f"Unblocked {identifier}",
            identifier=identifier,
        )
        return True


class SuspensionStore:
    """Per-agent suspension flag."""

    def __init__(
        self,
        store: KeyValueStore,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._audit = audit or AuditLogger()
        self._clock = clock or now_ms

    async def get(self, agent_id: str) -> Optional[SuspensionEntry]:
        doc = await self._store.get(paths.suspension(agent_id))
        return SuspensionEntry.from_document(doc) if doc else None

    async def is_suspended(self, agent_id: str) -> bool:
        doc = await self._store.get(paths.suspension(agent_id))
        return bool(doc) and doc.get("suspended") is True

    async def suspend(
        self, agent_id: str, reason: str = SUSPICIOUS_ACTIVITY_REASON
    ) -> SuspensionEntry:
        entry = SuspensionEntry(suspended=True, timestamp=self._clock(), reason=reason)
        await self._store.set(paths.suspension(agent_id), entry.to_document())
        self._audit.log_event(
            EventType.AGENT_SUSPENDED,
            EventSeverity.ALERT,
            f"Suspended agent {agent_id}: {reason}",
            identifier=agent_id,
        )
        return entry

    async def reinstate(self, agent_id: str, reason: str = "reinstated") -> SuspensionEntry:
        entry = SuspensionEntry(suspended=False, timestamp=self._clock(), reason=reason)
        await self._store.set(paths.suspension(agent_id), entry.to_document())
        self._audit.log_event(
            EventType.AGENT_REINSTATED,
            EventSeverity.INFO,
            f"Reinstated agent {agent_id}",
            identifier=agent_id,
        )
        return entry


class EnhancedMonitoringStore:
    """Time-boxed enhanced-monitoring markers."""

    def __init__(
        self,
        store: KeyValueStore,
        default_duration_ms: int = DAY_MS,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._duration = default_duration_ms
        self._audit = audit or AuditLogger()
        self._clock = clock or now_ms

    async def get(self, identifier: str) -> Optional[MonitoringMarker]:
        doc = await self._store.get(paths.monitoring(identifier))
        return MonitoringMarker.from_document(doc) if doc else None

    async def is_monitored(self, identifier: str) -> bool:
        marker = await self.get(identifier)
        return marker is not None and marker.active_at(self._clock())

    async def enable(
        self, identifier: str, duration_ms: Optional[int] = None
    ) -> MonitoringMarker:
        """Upsert the marker; re-enabling restarts the time box."""
        marker = MonitoringMarker(
            enabled=True,
            timestamp=self._clock(),
            duration_ms=duration_ms or self._duration,
        )
        await self._store.set(paths.monitoring(identifier), marker.to_document())
        self._audit.log_event(
            EventType.MONITORING_ENABLED,
            EventSeverity.ALERT,
            f"Enhanced monitoring for {identifier} ({marker.duration_ms}ms)",
            identifier=identifier,
            details={"duration_ms": marker.duration_ms},
        )
        return marker

    async def disable(self, identifier: str) -> None:
        await self._store.delete(paths.monitoring(identifier))


class AlertLog:
    """Append-only administrative alert log."""

    def __init__(
        self,
        store: KeyValueStore,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._audit = audit or AuditLogger()
        self._clock = clock or now_ms

    async def raise_alert(
        self,
        identifier: str,
        activities: Sequence[SuspiciousActivityRecord],
        message: Optional[str] = None,
    ) -> Tuple[str, AlertRecord]:
        alert = AlertRecord(
            identifier=identifier,
            activities=tuple(activities),
            timestamp=self._clock(),
            message=message or f"Suspicious activity detected for {identifier}",
        )
        path = await self._store.append(paths.ALERTS_ROOT, alert.to_document())
        self._audit.log_event(
            EventType.ALERT_RAISED,
            EventSeverity.ALERT,
            alert.message,
            identifier=identifier,
            details={"alert_path": path, "activity_count": len(alert.activities)},
        )
        return path, alert

    async def recent(self, limit: int = 50) -> List[AlertRecord]:
        """Most recent alerts, newest first."""
        docs = await self._store.scan(paths.ALERTS_ROOT)
        newest = sorted(docs.items(), reverse=True)[:limit]
        return [AlertRecord.from_document(doc) for _, doc in newest]
