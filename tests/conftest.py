"""
Shared pytest fixtures for the agentgate test suite.

  - FakeClock        -> deterministic epoch-millisecond time for every component
  - memory_store     -> fresh InMemoryStore per test
  - sqlite_store     -> SQLiteStore in a temp directory (never ./data)
  - structlog        -> reset to defaults so capture_logs sees every event
"""

import pytest
import structlog

from agentgate.core.config import HOUR_MS, MINUTE_MS
from agentgate.store import InMemoryStore, SQLiteStore

# 2023-11-14 00:00:00 UTC, a whole-day boundary
DAY_START = 1_699_920_000_000
# 10:30 UTC the same day
T0 = DAY_START + 10 * HOUR_MS + 30 * MINUTE_MS


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now

    def set(self, ms: int) -> int:
        self.now = ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteStore(str(tmp_path / "agentgate.db"), lock_timeout=10.0)


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo any structlog.configure() a test (or the app) may have done."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()
