"""
SQLite database storage for wiptrack.

Schema:
- work_items: per-user overrides (priority, notes, hidden) keyed by
  (item id, user key). Item ids look like ``pr:owner/repo#123``.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable

from loguru import logger

from .config import get_wiptrack_dir
from .models import Override, item_kind_from_id


DB_FILENAME = "wiptrack.db"
CURRENT_SCHEMA_VERSION = 1

# Stored when a row is created without a priority. Outside the 0..4 level
# range, so reconciliation falls back to auto-classification.
DEFAULT_PRIORITY = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- User overrides for upstream items
CREATE TABLE IF NOT EXISTS work_items (
    id TEXT NOT NULL,
    user_key TEXT NOT NULL,
    item_kind TEXT NOT NULL,
    priority INTEGER NOT NULL,
    notes TEXT,
    hidden INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (id, user_key)
);

CREATE INDEX IF NOT EXISTS idx_work_items_user ON work_items(user_key);
"""


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class StoreError(RuntimeError):
    """Persistence unavailable or a write failed."""


class Store:
    """SQLite storage manager for wiptrack overrides."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = get_wiptrack_dir() / DB_FILENAME
        self.db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            self._run_migrations(conn)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            return 0
        value = row[0]
        return int(value) if value is not None else 0

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        current = self._get_schema_version(conn)
        if current >= CURRENT_SCHEMA_VERSION:
            return
        # v0 -> v1: initial schema, created by SCHEMA above
        self._set_schema_version(conn, CURRENT_SCHEMA_VERSION)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection; one transaction per block."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("store.write failed db={} error={}", self.db_path, e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _now(self) -> str:
        """Get current timestamp in ISO format."""
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    @staticmethod
    def _row_to_override(row: sqlite3.Row) -> Override:
        return Override(
            id=row["id"],
            user_key=row["user_key"],
            item_kind=row["item_kind"],
            priority=int(row["priority"]),
            notes=row["notes"],
            hidden=bool(row["hidden"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # Overrides
    # =========================================================================

    def get_overrides(self, user_key: str) -> list[Override]:
        """All override rows for a user."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM work_items WHERE user_key = ? ORDER BY created_at, id",
                (user_key,)
            ).fetchall()
            return [self._row_to_override(row) for row in rows]

    def get_override(self, item_id: str, user_key: str) -> Override | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM work_items WHERE id = ? AND user_key = ?",
                (item_id, user_key)
            ).fetchone()
            return self._row_to_override(row) if row else None

    def upsert_override(
        self,
        item_id: str,
        user_key: str,
        priority: int = UNSET,
        notes: str | None = UNSET,
        hidden: bool = UNSET,
    ) -> Override:
        """Partial insert-or-update; only supplied fields change.

        New rows take DEFAULT_PRIORITY, no notes and hidden=False for
        anything not supplied.
        """
        updates: dict[str, Any] = {}
        if priority is not UNSET:
            updates["priority"] = int(priority)
        if notes is not UNSET:
            updates["notes"] = notes
        if hidden is not UNSET:
            updates["hidden"] = 1 if hidden else 0
        if not updates:
            raise ValueError("No fields to update")

        now = self._now()
        with self._connect() as conn:
            existing = conn.execute(
                "SELECT 1 FROM work_items WHERE id = ? AND user_key = ?",
                (item_id, user_key)
            ).fetchone()

            if existing:
                assignments = ", ".join(f"{column} = ?" for column in updates)
                conn.execute(
                    f"UPDATE work_items SET {assignments}, updated_at = ? WHERE id = ? AND user_key = ?",
                    (*updates.values(), now, item_id, user_key)
                )
            else:
                conn.execute(
                    """
                    INSERT INTO work_items
                        (id, user_key, item_kind, priority, notes, hidden, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item_id,
                        user_key,
                        item_kind_from_id(item_id),
                        updates.get("priority", DEFAULT_PRIORITY),
                        updates.get("notes"),
                        updates.get("hidden", 0),
                        now,
                        now,
                    )
                )

            row = conn.execute(
                "SELECT * FROM work_items WHERE id = ? AND user_key = ?",
                (item_id, user_key)
            ).fetchone()
            return self._row_to_override(row)

    def batch_upsert_priorities(self, user_key: str, entries: Iterable[tuple[str, int]]) -> int:
        """Set priority for many items in one transaction.

        Notes and hidden on existing rows are left alone. Returns the number
        of entries written.
        """
        now = self._now()
        params = [
            (item_id, user_key, item_kind_from_id(item_id), int(priority), now, now)
            for item_id, priority in entries
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO work_items
                    (id, user_key, item_kind, priority, notes, hidden, created_at, updated_at)
                VALUES (?, ?, ?, ?, NULL, 0, ?, ?)
                ON CONFLICT(id, user_key) DO UPDATE SET
                    priority = excluded.priority,
                    updated_at = excluded.updated_at
                """,
                params
            )
        return len(params)
