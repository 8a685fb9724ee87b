"""
Key/value caches with per-entry TTL.

Two backends share one protocol:
- MemoryCache: process-local dict, fine for a single uvicorn worker and tests
- SqliteCache: `cache_entries` table, shared by every process using the db file

Both are used for the short-lived upstream cache (prs:/issues:) and the
longer-lived snapshot cache (snapshot:).
"""

from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Protocol, runtime_checkable

from .config import WiptrackConfig


Clock = Callable[[], float]


@runtime_checkable
class KVCache(Protocol):
    """Protocol every cache backend must satisfy."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None if missing or expired."""
        ...

    def put(self, key: str, value: str, ttl: int) -> None:
        """Store value for ttl seconds."""
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryCache:
    """In-process cache; expired entries are dropped on read and on every put."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        # Callers reach the cache from worker threads (asyncio.to_thread)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            self._purge(now)
            self._entries[key] = (value, now + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]


CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at);
"""


class SqliteCache:
    """SQLite-backed cache, safe to share between processes."""

    def __init__(self, db_path: Path, clock: Clock = time.time):
        self.db_path = db_path
        self._clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(CACHE_SCHEMA)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        now = self._clock()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM cache_entries WHERE key = ?",
                (key,)
            ).fetchone()
            if row is None:
                return None
            if row[1] <= now:
                conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (now,))
                return None
            return row[0]

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cache_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, self._clock() + ttl)
            )

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))


def build_cache(config: WiptrackConfig) -> KVCache:
    """Create the cache backend named in config."""
    if config.cache.backend == "sqlite":
        return SqliteCache(config.db_path)
    return MemoryCache()
