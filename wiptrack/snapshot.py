"""
Worklist snapshots for read-only consumers.

Every full listing publishes the reconciled items under ``snapshot:{user}``
with a longer TTL than the upstream cache. The MCP endpoint reads it back,
drops hidden items and groups the rest by priority.
"""

from __future__ import annotations

import json

from loguru import logger

from .cache import KVCache
from .models import PRIORITY_ORDER, CanonicalItem


DEFAULT_SNAPSHOT_TTL = 3600  # 1 hour


class SnapshotPublisher:
    """Writes and reads per-user worklist snapshots."""

    def __init__(self, cache: KVCache, ttl: int = DEFAULT_SNAPSHOT_TTL):
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def cache_key(user_key: str) -> str:
        return f"snapshot:{user_key}"

    def publish(self, user_key: str, items: list[CanonicalItem]) -> None:
        payload = json.dumps([item.to_dict() for item in items])
        self.cache.put(self.cache_key(user_key), payload, self.ttl)
        logger.debug("snapshot.published user={} count={}", user_key, len(items))

    def latest(self, user_key: str) -> list[CanonicalItem] | None:
        """Most recent snapshot, or None when nothing (valid) is cached."""
        cached = self.cache.get(self.cache_key(user_key))
        if cached is None:
            return None
        try:
            return [CanonicalItem.from_dict(entry) for entry in json.loads(cached)]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("snapshot.corrupt user={} error={}", user_key, e)
            return None


def group_by_priority(items: list[CanonicalItem]) -> dict[str, list[CanonicalItem]]:
    """Visible items grouped uber..meh; empty groups are omitted."""
    groups: dict[str, list[CanonicalItem]] = {name: [] for name in PRIORITY_ORDER}
    for item in items:
        if item.hidden:
            continue
        groups[item.priority_name].append(item)
    return {name: members for name, members in groups.items() if members}


def item_badges(item: CanonicalItem) -> list[str]:
    badges: list[str] = []
    if item.is_draft:
        badges.append("Draft")

    if item.ci_status in ("failure", "error"):
        badges.append("CI Failing")
    elif item.ci_status == "pending":
        badges.append("CI Pending")
    elif item.ci_status == "success":
        badges.append("CI Passing")

    if item.mergeable == "conflicting":
        badges.append("Merge Conflicts")

    if item.review_status == "changes_requested":
        badges.append("Changes Requested")
    elif item.review_status == "approved":
        badges.append("Approved")
    elif item.review_status in ("review_required", "pending_review"):
        badges.append("Pending Review")
    return badges


def render_markdown(groups: dict[str, list[CanonicalItem]]) -> str:
    """Human-readable summary of grouped items."""
    lines = ["# Work In Progress", ""]
    for level in PRIORITY_ORDER:
        members = groups.get(level)
        if not members:
            continue
        lines.append(f"## {level.capitalize()} Priority")
        lines.append("")
        for item in members:
            type_label = "PR" if item.type == "pr" else "Issue"
            badges = item_badges(item)
            badge_str = f" [{', '.join(badges)}]" if badges else ""
            lines.append(f"- [{type_label}] **{item.title}** ({item.repo}#{item.number}){badge_str}")
            lines.append(f"  {item.url}")
            if item.notes:
                lines.append(f"  Notes: {item.notes}")
        lines.append("")
    return "\n".join(lines)
