"""
Admission-control exception classes.

Denials (rate limit hit, quota exhausted, blocked caller) are NOT exceptions:
they come back as decision objects. Only configuration and store faults raise.
"""

from typing import Any, Dict, Optional


class AgentGateError(Exception):
    """Base exception for admission-control failures"""
    pass


class StoreUnavailable(AgentGateError):
    """Raised when the key-value store fails to answer (transient)"""
    pass


class WriteIndeterminate(StoreUnavailable):
    """Raised when a write gave up after timing out; it may still have landed"""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class InvalidConfiguration(AgentGateError):
    """Raised when the security configuration is rejected at load time"""
    pass


class PartialUpdateFailure(AgentGateError):
    """Raised when a quota consumption may have charged the hourly bucket
    but not the daily one.

    The caller may already be acting on the consumption, so this is kept
    distinct from a clean denial for operators to reconcile.
    """

    def __init__(
        self,
        agent_id: str,
        committed_path: str,
        failed_path: str,
        deltas: Dict[str, Any],
        cause: Optional[BaseException] = None,
    ):
        self.agent_id = agent_id
        self.committed_path = committed_path
        self.failed_path = failed_path
        self.deltas = dict(deltas)
        self.cause = cause
        super().__init__(
            f"Quota update for agent {agent_id} is indeterminate: "
            f"{committed_path} may be charged, {failed_path} is not ({cause})"
        )
