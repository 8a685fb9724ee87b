"""
Worklist reconciliation.

Merges upstream pull requests and issues with the user's stored overrides
into one sorted list of CanonicalItem. Pure: no I/O, never raises on bad
override rows (an out-of-range priority reads as "no override").
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from .config import ClassificationRules
from .models import (
    CanonicalItem,
    CiStatus,
    ItemKind,
    MergeStatus,
    Override,
    Priority,
    ReviewStatus,
    UpstreamItem,
    make_item_id,
)


def _under_owner(repo: str, owners: Iterable[str]) -> bool:
    return any(repo.startswith(owner.lower().rstrip("/") + "/") for owner in owners)


def auto_priority(repo: str, title: str, rules: ClassificationRules) -> Priority:
    """Default priority for an item nobody has prioritized; first match wins."""
    repo_lower = repo.lower()
    title_lower = title.lower()

    if repo_lower in {r.lower() for r in rules.home_repos} and any(
        keyword.lower() in title_lower for keyword in rules.keywords
    ):
        return Priority.UBER

    if _under_owner(repo_lower, rules.priority_owners):
        return Priority.HIGH

    if _under_owner(repo_lower, rules.home_owners):
        return Priority.NORMAL

    return Priority.LOW


def ci_status(item: UpstreamItem) -> CiStatus | None:
    state = item.check_state
    if state == "SUCCESS":
        return "success"
    if state == "FAILURE":
        return "failure"
    if state in ("PENDING", "EXPECTED"):
        return "pending"
    if state == "ERROR":
        return "error"
    return None


def merge_status(item: UpstreamItem) -> MergeStatus | None:
    if not item.mergeable:
        return None
    if item.mergeable == "MERGEABLE":
        return "mergeable"
    if item.mergeable == "CONFLICTING":
        return "conflicting"
    return "unknown"


def review_status(item: UpstreamItem) -> ReviewStatus | None:
    if item.review_decision == "APPROVED":
        return "approved"
    if item.review_decision == "CHANGES_REQUESTED":
        return "changes_requested"
    if item.review_decision == "REVIEW_REQUIRED":
        return "review_required"
    # Reviewers requested but no decision yet
    if item.review_request_count > 0:
        return "pending_review"
    return None


def resolve_priority(override: Override | None, upstream: UpstreamItem, rules: ClassificationRules) -> Priority:
    if override is not None:
        chosen = Priority.parse(override.priority)
        if chosen is not None:
            return chosen
    return auto_priority(upstream.repo, upstream.title, rules)


def to_canonical(
    upstream: UpstreamItem,
    kind: ItemKind,
    override: Override | None,
    rules: ClassificationRules,
) -> CanonicalItem:
    item = CanonicalItem(
        id=make_item_id(kind, upstream.repo, upstream.number),
        type=kind,
        title=upstream.title,
        body=upstream.body,
        number=upstream.number,
        url=upstream.url,
        repo=upstream.repo,
        is_draft=upstream.is_draft,
        created_at=upstream.created_at,
        updated_at=upstream.updated_at,
        priority=resolve_priority(override, upstream, rules),
        notes=override.notes if override is not None else None,
        hidden=override.hidden if override is not None else False,
    )
    if kind == "pr":
        item.ci_status = ci_status(upstream)
        item.mergeable = merge_status(upstream)
        item.review_status = review_status(upstream)
    return item


def _timestamp(value: str) -> float:
    """Epoch seconds for an ISO timestamp; unparseable values sort as oldest."""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return float("-inf")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def sort_items(items: list[CanonicalItem]) -> list[CanonicalItem]:
    """Priority ascending, then newest first. Stable for equal keys."""
    return sorted(items, key=lambda item: (int(item.priority), -_timestamp(item.created_at)))


def reconcile(
    pr_items: Iterable[UpstreamItem],
    issue_items: Iterable[UpstreamItem],
    overrides: Mapping[str, Override],
    rules: ClassificationRules | None = None,
) -> list[CanonicalItem]:
    """Build the sorted worklist from upstream items and stored overrides."""
    rules = rules or ClassificationRules()

    batches: tuple[tuple[ItemKind, Iterable[UpstreamItem]], ...] = (
        ("pr", pr_items),
        ("issue", issue_items),
    )
    combined: dict[str, CanonicalItem] = {}
    for kind, upstream_items in batches:
        for upstream in upstream_items:
            item_id = make_item_id(kind, upstream.repo, upstream.number)
            combined[item_id] = to_canonical(upstream, kind, overrides.get(item_id), rules)

    return sort_items(list(combined.values()))


def index_overrides(rows: Iterable[Override]) -> dict[str, Override]:
    return {row.id: row for row in rows}
