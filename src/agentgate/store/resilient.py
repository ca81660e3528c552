# Resilience wrapper for a key-value store
#
# Applies the timeout and bounded retry budget (exponential backoff) to each
# store primitive on its own, never to a whole read-modify-write sequence.
# Each retried primitive is idempotent:
#
#   get / scan   read-only
#   set          writes an absolute value computed before the call
#   delete       no-op when the leaf is already gone
#   append       child key chosen once, then a retried set of that child
#
# so a retry can repeat a write but never apply a delta twice.
#
# A timed-out write keeps running in the backend and may still land. When a
# set gives up after any of its attempts timed out, WriteIndeterminate is
# raised instead of plain StoreUnavailable.
#
# lock() is passed straight through; acquisition deadlines belong to the
# backend.

import asyncio
import logging
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, Optional, TypeVar

from ..core.config import ResiliencePolicy
from ..core.errors import StoreUnavailable, WriteIndeterminate
from .base import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def describe_error(exc: Optional[BaseException]) -> str:
    """Exception text, falling back to the class name for empty messages."""
    if exc is None:
        return "unknown error"
    return str(exc) or type(exc).__name__


class ResilientStore(KeyValueStore):
    """Wrap ``store`` so every primitive honours ``policy``.

    Usage::

        store = ResilientStore(SQLiteStore(), config.resilience)
    """

    def __init__(self, store: KeyValueStore, policy: ResiliencePolicy):
        self._store = store
        self._policy = policy

    @property
    def inner(self) -> KeyValueStore:
        return self._store

    async def get(self, path: str) -> Optional[Any]:
        return await self._call("get", path, lambda: self._store.get(path))

    async def set(self, path: str, value: Any) -> None:
        await self._call(
            "set", path, lambda: self._store.set(path, value), write=True
        )

    async def delete(self, path: str) -> None:
        await self._call("delete", path, lambda: self._store.delete(path))

    async def scan(self, prefix: str) -> Dict[str, Any]:
        return await self._call("scan", prefix, lambda: self._store.scan(prefix))

    def lock(self, path: str) -> AsyncContextManager[None]:
        return self._store.lock(path)

    async def close(self) -> None:
        await self._store.close()

    async def _call(
        self,
        operation: str,
        path: str,
        call: Callable[[], Awaitable[T]],
        write: bool = False,
    ) -> T:
        policy = self._policy
        backoff = policy.initial_backoff_seconds
        last_error: Optional[BaseException] = None
        timed_out = False

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=policy.timeout_seconds)
            except (StoreUnavailable, asyncio.TimeoutError) as exc:
                last_error = exc
                if isinstance(exc, asyncio.TimeoutError):
                    timed_out = True
                if attempt == policy.max_attempts:
                    break
                logger.warning(
                    "Store %s on %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                    operation, path, describe_error(exc), backoff,
                    attempt, policy.max_attempts,
                )
                await asyncio.sleep(backoff)
                backoff *= policy.backoff_multiplier

        message = (
            f"{operation} on {path} failed after {policy.max_attempts} attempts: "
            f"{describe_error(last_error)}"
        )
        logger.error("Store %s", message)
        if write and timed_out:
            raise WriteIndeterminate(path, message) from last_error
        raise StoreUnavailable(message) from last_error
