"""
Key-value store contract required by the admission-control core.

The store is path-addressed and asynchronous. Values are JSON-compatible
(dicts, lists, numbers, strings, booleans). Each path is one leaf: ``scan``
returns every leaf strictly below a prefix, and ``append`` creates a new leaf
under a parent path with a unique, chronologically sortable name.

Atomicity: plain get-then-set is NOT atomic. Every read-modify-write in the
core runs inside ``lock(path)``, an advisory mutual-exclusion scope for
exactly one path. Implementations must make that lock effective for every
process sharing the store, not just the current event loop.
"""

import itertools
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Dict, Optional

_sequence = itertools.count()


def new_child_key() -> str:
    """Unique child name that sorts by creation time."""
    millis = int(time.time() * 1000)
    return f"{millis:013d}-{next(_sequence) % 1_000_000:06d}-{uuid.uuid4().hex[:8]}"


class KeyValueStore(ABC):
    """Asynchronous path-addressed store.

    Read-your-writes consistency per path is required. All methods may
    raise ``StoreUnavailable`` when the backend cannot answer.
    """

    @abstractmethod
    async def get(self, path: str) -> Optional[Any]:
        """Return the value at ``path`` or None when absent."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Write ``value`` at ``path``; ``None`` deletes the leaf."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the leaf at ``path`` (no-op when absent)."""

    @abstractmethod
    async def scan(self, prefix: str) -> Dict[str, Any]:
        """Return ``{path: value}`` for every leaf strictly below ``prefix``."""

    @abstractmethod
    def lock(self, path: str) -> AsyncContextManager[None]:
        """Advisory lock scoped to exactly one path."""

    async def append(self, path: str, value: Any) -> str:
        """Store ``value`` under a new unique child of ``path``.

        Returns:
            The full path of the created child.
        """
        child = f"{path}/{new_child_key()}"
        await self.set(child, value)
        return child

    async def close(self) -> None:
        """Release backend resources."""
        return None
