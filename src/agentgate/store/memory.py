# In-process key-value store
#
# Leaves live in a plain dict; values are deep-copied on the way in and out so
# callers never share mutable state with the store. Per-path asyncio locks are
# refcounted and dropped once no holder or waiter remains.
#
# Every operation yields to the event loop once, the way a networked store
# would, so interleavings between concurrent callers actually happen.

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

from .base import KeyValueStore


@dataclass
class _PathLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class InMemoryStore(KeyValueStore):
    """Single-process store for tests and single-instance deployments.

    Locks are only effective inside one event loop; use SQLiteStore (or a
    networked store with leases) when several instances share state.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._locks: Dict[str, _PathLock] = {}

    async def get(self, path: str) -> Optional[Any]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._data.get(path))

    async def set(self, path: str, value: Any) -> None:
        await asyncio.sleep(0)
        if value is None:
            self._data.pop(path, None)
        else:
            self._data[path] = copy.deepcopy(value)

    async def delete(self, path: str) -> None:
        await asyncio.sleep(0)
        self._data.pop(path, None)

    async def scan(self, prefix: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        start = prefix.rstrip("/") + "/"
        return {
            path: copy.deepcopy(value)
            for path, value in sorted(self._data.items())
            if path.startswith(start)
        }

    @asynccontextmanager
    async def lock(self, path: str) -> AsyncIterator[None]:
        entry = self._locks.get(path)
        if entry is None:
            entry = self._locks[path] = _PathLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(path, None)

    # ── Introspection (tests/debug) ─────────────────────────────────

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of every stored leaf."""
        return copy.deepcopy(self._data)
