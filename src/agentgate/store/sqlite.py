# SQLite-backed key-value store
#
# Persistent store for single-host deployments where several service
# processes share one database file.
#
# Design:
#   - One row per leaf: kv(path PRIMARY KEY, value JSON)
#   - WAL journal mode for concurrent readers
#   - Advisory per-path locks are leases in their own table, so they hold
#     across processes. A live holder renews its lease every lease_ttl / 3;
#     a crashed holder's lease expires after ``lease_ttl`` seconds.
#   - An acquisition cancelled while its worker thread is still running
#     waits for that thread, then drops the lease it may have taken.
#   - Blocking sqlite3 calls run in worker threads (asyncio.to_thread)
#   - Every sqlite3.Error surfaces as StoreUnavailable

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional

from ..core.errors import StoreUnavailable
from .base import KeyValueStore

logger = logging.getLogger(__name__)

LEASE_TTL_SECONDS = 10.0
LOCK_TIMEOUT_SECONDS = 5.0
LOCK_POLL_SECONDS = 0.005
MAX_LOCK_POLL_SECONDS = 0.1


class SQLiteStore(KeyValueStore):
    """Key-value store on a WAL-mode SQLite file.

    Usage::

        store = SQLiteStore("data/agentgate.db")
        async with store.lock("rateLimits/1.2.3.4/api"):
            window = await store.get("rateLimits/1.2.3.4/api") or []
            ...
            await store.set("rateLimits/1.2.3.4/api", window)
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        lease_ttl: float = LEASE_TTL_SECONDS,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
        poll_interval: float = LOCK_POLL_SECONDS,
    ):
        self.db_path = Path(db_path) if db_path else Path("data/agentgate.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lease_ttl = lease_ttl
        self._lock_timeout = lock_timeout
        self._poll_interval = poll_interval
        try:
            self._init_database()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open SQLite store {self.db_path}: {exc}") from exc

    @contextmanager
    def _connect(self):
        """Open a WAL-mode SQLite connection; auto-closes on exit."""
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    path TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS leases (
                    path TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)

    async def _run(self, fn: Callable, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"SQLite store error: {exc}") from exc

    # ── Leaves ───────────────────────────────────────────────────────

    def _get(self, path: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE path = ?", (path,)
            ).fetchone()
        return json.loads(row["value"]) if row else None

    def _set(self, path: str, value: Any) -> None:
        with self._connect() as conn:
            if value is None:
                conn.execute("DELETE FROM kv WHERE path = ?", (path,))
                return
            conn.execute(
                """
                INSERT INTO kv (path, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(path) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (path, json.dumps(value)),
            )

    def _scan(self, prefix: str) -> Dict[str, Any]:
        base = prefix.rstrip("/")
        # "/" < "0" in ASCII, so [base + "/", base + "0") is exactly the subtree
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT path, value FROM kv WHERE path >= ? AND path < ? ORDER BY path",
                (base + "/", base + "0"),
            ).fetchall()
        return {row["path"]: json.loads(row["value"]) for row in rows}

    async def get(self, path: str) -> Optional[Any]:
        return await self._run(self._get, path)

    async def set(self, path: str, value: Any) -> None:
        await self._run(self._set, path, value)

    async def delete(self, path: str) -> None:
        await self._run(self._set, path, None)

    async def scan(self, prefix: str) -> Dict[str, Any]:
        return await self._run(self._scan, prefix)

    # ── Leases ───────────────────────────────────────────────────────

    def _try_acquire(self, path: str, holder: str) -> bool:
        now = time.time()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO leases (path, holder, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    holder = excluded.holder,
                    expires_at = excluded.expires_at
                WHERE leases.expires_at < ?
                """,
                (path, holder, now + self._lease_ttl, now),
            )
            row = conn.execute(
                "SELECT holder FROM leases WHERE path = ?", (path,)
            ).fetchone()
        return row is not None and row["holder"] == holder

    def _renew(self, path: str, holder: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE leases SET expires_at = ? WHERE path = ? AND holder = ?",
                (time.time() + self._lease_ttl, path, holder),
            )
            return cursor.rowcount == 1

    def _release(self, path: str, holder: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM leases WHERE path = ? AND holder = ?", (path, holder)
            )
            return cursor.rowcount == 1

    async def _acquire(self, path: str, holder: str) -> None:
        deadline = time.monotonic() + self._lock_timeout
        delay = self._poll_interval
        while True:
            attempt = asyncio.ensure_future(self._run(self._try_acquire, path, holder))
            try:
                acquired = await asyncio.shield(attempt)
            except asyncio.CancelledError:
                await self._abandon(attempt, path, holder)
                raise
            if acquired:
                return
            if time.monotonic() >= deadline:
                raise StoreUnavailable(
                    f"Timed out after {self._lock_timeout}s waiting for lock on {path}"
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_LOCK_POLL_SECONDS)

    async def _abandon(self, attempt: asyncio.Future, path: str, holder: str) -> None:
        """Drop the lease a cancelled acquisition may still commit."""
        try:
            await attempt
            await self._run(self._release, path, holder)
        except StoreUnavailable:
            logger.warning("Failed to drop abandoned lease on %s", path, exc_info=True)

    async def _renew_loop(self, path: str, holder: str) -> None:
        interval = self._lease_ttl / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self._run(self._renew, path, holder)
            except StoreUnavailable:
                logger.warning("Failed to renew lease on %s", path, exc_info=True)
                continue
            if not renewed:
                logger.error("Lease on %s was lost while held", path)
                return

    @asynccontextmanager
    async def lock(self, path: str) -> AsyncIterator[None]:
        holder = uuid.uuid4().hex
        await self._acquire(path, holder)
        renewer = asyncio.create_task(self._renew_loop(path, holder))
        try:
            yield
        finally:
            renewer.cancel()
            try:
                await renewer
            except asyncio.CancelledError:
                pass
            try:
                if not await self._run(self._release, path, holder):
                    logger.warning("Lease on %s expired before release", path)
            except StoreUnavailable:
                # Lease expires on its own after lease_ttl
                logger.warning("Failed to release lock on %s", path, exc_info=True)
