"""
Validated writes against the override store.

Every operation validates its whole input before touching the store, so a
rejected request never leaves a partial write behind.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .github import UpstreamFetcher
from .models import Override, Priority
from .store import Store


UPDATABLE_FIELDS = ("priority", "notes", "hidden")


class MutationError(ValueError):
    """Rejected mutation request (client error)."""


def _validate_item_id(item_id: Any) -> str:
    if not isinstance(item_id, str) or not item_id.strip():
        raise MutationError("Item id is required")
    return item_id


def _validate_priority(value: Any) -> int:
    level = Priority.parse(value)
    if level is None:
        raise MutationError(f"Priority must be an integer between 0 and 4, got {value!r}")
    return int(level)


class MutationGateway:
    """Routes user edits to the override store and refreshes to the fetcher."""

    def __init__(self, store: Store, fetcher: UpstreamFetcher):
        self.store = store
        self.fetcher = fetcher

    def update_item(self, user_key: str, item_id: str, fields: dict[str, Any]) -> Override:
        """Partial update of priority, notes and/or hidden."""
        item_id = _validate_item_id(item_id)
        if not isinstance(fields, dict):
            raise MutationError("Update payload must be an object")

        changes: dict[str, Any] = {}
        if "priority" in fields:
            changes["priority"] = _validate_priority(fields["priority"])
        if "notes" in fields:
            notes = fields["notes"]
            if notes is not None and not isinstance(notes, str):
                raise MutationError("Notes must be a string or null")
            changes["notes"] = notes
        if "hidden" in fields:
            hidden = fields["hidden"]
            if not isinstance(hidden, bool):
                raise MutationError("Hidden must be a boolean")
            changes["hidden"] = hidden

        if not changes:
            raise MutationError("No fields to update")

        override = self.store.upsert_override(item_id, user_key, **changes)
        logger.info("mutations.update user={} item={} fields={}", user_key, item_id, sorted(changes))
        return override

    def hide_item(self, user_key: str, item_id: str) -> Override:
        return self.update_item(user_key, item_id, {"hidden": True})

    def reorder(self, user_key: str, entries: Any) -> int:
        """Atomically set priorities for a list of ``{id, priority}`` entries."""
        if not isinstance(entries, list):
            raise MutationError("Invalid items array")

        pairs: list[tuple[str, int]] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise MutationError(f"Item {index} must be an object")
            if "priority" not in entry:
                raise MutationError(f"Item {index} is missing a priority")
            pairs.append((_validate_item_id(entry.get("id")), _validate_priority(entry["priority"])))

        written = self.store.batch_upsert_priorities(user_key, pairs)
        logger.info("mutations.reorder user={} count={}", user_key, written)
        return written

    def refresh(self, user_key: str) -> None:
        """Force the next listing to refetch from GitHub."""
        self.fetcher.invalidate(user_key)
