"""
Core data types: priority levels, upstream records, overrides, worklist items.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Literal


ItemKind = Literal["pr", "issue"]

CiStatus = Literal["success", "failure", "pending", "error"]
MergeStatus = Literal["mergeable", "conflicting", "unknown"]
ReviewStatus = Literal["approved", "changes_requested", "review_required", "pending_review"]


class Priority(IntEnum):
    """Named priority levels; lower value = more urgent."""

    UBER = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3
    MEH = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> "Priority | None":
        """Return the level for an int in range, None for anything else."""
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


PRIORITY_ORDER: tuple[str, ...] = tuple(level.label for level in Priority)


def make_item_id(kind: ItemKind, repo: str, number: int) -> str:
    """Stable worklist id, e.g. ``pr:owner/repo#123``."""
    return f"{kind}:{repo}#{number}"


def item_kind_from_id(item_id: str) -> ItemKind:
    return "pr" if item_id.startswith("pr:") else "issue"


@dataclass
class UpstreamItem:
    """A pull request or issue as returned by GitHub."""

    id: str
    title: str
    body: str | None
    number: int
    url: str
    repo: str
    created_at: str
    updated_at: str
    is_draft: bool = False
    # PR-only metadata
    mergeable: str | None = None
    review_decision: str | None = None
    review_request_count: int = 0
    check_state: str | None = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> "UpstreamItem":
        """Parse a GraphQL PullRequest/Issue node."""
        repository = node.get("repository") or {}
        review_requests = node.get("reviewRequests") or {}

        check_state = None
        commit_nodes = (node.get("commits") or {}).get("nodes") or []
        if commit_nodes:
            commit = (commit_nodes[0] or {}).get("commit") or {}
            rollup = commit.get("statusCheckRollup") or {}
            check_state = rollup.get("state")

        return cls(
            id=node.get("id", ""),
            title=node.get("title", ""),
            body=node.get("body"),
            number=int(node.get("number", 0)),
            url=node.get("url", ""),
            repo=repository.get("nameWithOwner", ""),
            created_at=node.get("createdAt", ""),
            updated_at=node.get("updatedAt", ""),
            is_draft=bool(node.get("isDraft", False)),
            mergeable=node.get("mergeable"),
            review_decision=node.get("reviewDecision"),
            review_request_count=int(review_requests.get("totalCount") or 0),
            check_state=check_state,
        )

    def to_node(self) -> dict[str, Any]:
        """Inverse of from_node; used for the upstream cache."""
        node: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "number": self.number,
            "url": self.url,
            "isDraft": self.is_draft,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "repository": {"nameWithOwner": self.repo},
        }
        if self.mergeable is not None:
            node["mergeable"] = self.mergeable
        if self.review_decision is not None:
            node["reviewDecision"] = self.review_decision
        if self.review_request_count:
            node["reviewRequests"] = {"totalCount": self.review_request_count}
        if self.check_state is not None:
            node["commits"] = {"nodes": [{"commit": {"statusCheckRollup": {"state": self.check_state}}}]}
        return node


@dataclass
class Override:
    """Stored user customization for one item."""

    id: str
    user_key: str
    item_kind: str
    priority: int
    notes: str | None
    hidden: bool
    created_at: str
    updated_at: str


@dataclass
class CanonicalItem:
    """One reconciled worklist entry."""

    id: str
    type: ItemKind
    title: str
    body: str | None
    number: int
    url: str
    repo: str
    is_draft: bool
    created_at: str
    updated_at: str
    priority: Priority
    notes: str | None = None
    hidden: bool = False
    ci_status: CiStatus | None = None
    mergeable: MergeStatus | None = None
    review_status: ReviewStatus | None = None

    @property
    def priority_name(self) -> str:
        return self.priority.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "number": self.number,
            "url": self.url,
            "repo": self.repo,
            "isDraft": self.is_draft,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "priority": int(self.priority),
            "priorityName": self.priority_name,
            "notes": self.notes,
            "hidden": self.hidden,
            "ciStatus": self.ci_status,
            "mergeable": self.mergeable,
            "reviewStatus": self.review_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CanonicalItem":
        return cls(
            id=data["id"],
            type=data["type"],
            title=data.get("title", ""),
            body=data.get("body"),
            number=int(data.get("number", 0)),
            url=data.get("url", ""),
            repo=data.get("repo", ""),
            is_draft=bool(data.get("isDraft", False)),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            priority=Priority(int(data["priority"])),
            notes=data.get("notes"),
            hidden=bool(data.get("hidden", False)),
            ci_status=data.get("ciStatus"),
            mergeable=data.get("mergeable"),
            review_status=data.get("reviewStatus"),
        )
