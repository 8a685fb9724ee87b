from __future__ import annotations

import sqlite3

import pytest

from wiptrack.store import DEFAULT_PRIORITY, Store, StoreError


def test_upsert_creates_row_with_defaults(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")

    override = store.upsert_override("pr:acme/core#7", "42", notes="check CI")

    assert override.priority == DEFAULT_PRIORITY
    assert override.notes == "check CI"
    assert override.hidden is False
    assert override.item_kind == "pr"
    assert override.created_at == override.updated_at


def test_partial_upsert_leaves_other_fields_alone(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")
    store.upsert_override("issue:acme/core#3", "42", priority=1, notes="ping bob")

    store.upsert_override("issue:acme/core#3", "42", hidden=True)
    override = store.get_override("issue:acme/core#3", "42")

    assert override is not None
    assert override.priority == 1
    assert override.notes == "ping bob"
    assert override.hidden is True
    assert override.item_kind == "issue"


def test_notes_can_be_cleared_with_none(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")
    store.upsert_override("pr:acme/core#7", "42", notes="temp")

    override = store.upsert_override("pr:acme/core#7", "42", notes=None)

    assert override.notes is None


def test_upsert_without_fields_raises(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")

    with pytest.raises(ValueError, match="No fields to update"):
        store.upsert_override("pr:acme/core#7", "42")

    assert store.get_overrides("42") == []


def test_overrides_are_scoped_per_user(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")
    store.upsert_override("pr:acme/core#7", "42", priority=0)
    store.upsert_override("pr:acme/core#7", "43", priority=4)

    assert [o.priority for o in store.get_overrides("42")] == [0]
    assert [o.priority for o in store.get_overrides("43")] == [4]
    assert store.get_override("pr:acme/core#7", "44") is None


def test_store_persists_across_instances(tmp_path):
    db_path = tmp_path / "wiptrack.db"
    Store(db_path=db_path).upsert_override("pr:acme/core#7", "42", priority=2)

    reopened = Store(db_path=db_path)

    assert reopened.get_override("pr:acme/core#7", "42").priority == 2


def test_batch_upsert_creates_and_updates(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")
    store.upsert_override("pr:acme/core#1", "42", priority=3, notes="keep", hidden=True)

    written = store.batch_upsert_priorities("42", [("pr:acme/core#1", 0), ("issue:acme/core#2", 2)])

    assert written == 2
    existing = store.get_override("pr:acme/core#1", "42")
    assert existing.priority == 0
    assert existing.notes == "keep"
    assert existing.hidden is True

    created = store.get_override("issue:acme/core#2", "42")
    assert created.priority == 2
    assert created.notes is None
    assert created.hidden is False
    assert created.item_kind == "issue"


def test_batch_upsert_empty_is_noop(tmp_path):
    store = Store(db_path=tmp_path / "wiptrack.db")

    assert store.batch_upsert_priorities("42", []) == 0
    assert store.get_overrides("42") == []


def test_batch_upsert_is_all_or_nothing(tmp_path):
    db_path = tmp_path / "wiptrack.db"
    store = Store(db_path=db_path)
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TRIGGER reject_bad BEFORE INSERT ON work_items
        WHEN NEW.id = 'pr:acme/core#bad'
        BEGIN SELECT RAISE(ABORT, 'rejected'); END
        """
    )
    conn.commit()
    conn.close()

    with pytest.raises(StoreError):
        store.batch_upsert_priorities("42", [("pr:acme/core#1", 0), ("pr:acme/core#bad", 1)])

    assert store.get_overrides("42") == []


def test_schema_version_recorded(tmp_path):
    db_path = tmp_path / "wiptrack.db"
    Store(db_path=db_path)

    conn = sqlite3.connect(db_path)
    try:
        version = conn.execute("SELECT version FROM schema_version").fetchone()[0]
    finally:
        conn.close()

    assert version == 1
