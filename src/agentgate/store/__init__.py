"""Key-value store contract and reference implementations."""

from .base import KeyValueStore, new_child_key
from .memory import InMemoryStore
from .resilient import ResilientStore
from .sqlite import SQLiteStore

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "ResilientStore",
    "SQLiteStore",
    "new_child_key",
]
