"""
GitHub GraphQL client and upstream fetcher for wiptrack.

Fetches the viewer's open pull requests and open issues (assigned to the
viewer, or in repos the viewer owns). Uses the session's OAuth token.

Supports:
- Read-through caching per user and item kind (prs:/issues:)
- Degrade-to-empty on any upstream failure
- Rate limit detection
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import contextmanager
from typing import Any, Callable, Generator

import requests
from loguru import logger

from .cache import KVCache
from .config import GitHubConfig
from .models import UpstreamItem


MAX_RETRIES = 2
RETRY_DELAY = 0.5
DEFAULT_CACHE_TTL = 300  # 5 minutes

PULL_REQUESTS_QUERY = """
query($first: Int!) {
  viewer {
    pullRequests(first: $first, states: OPEN) {
      nodes {
        id
        title
        body
        number
        url
        isDraft
        createdAt
        updatedAt
        repository {
          nameWithOwner
        }
        mergeable
        reviewDecision
        reviewRequests {
          totalCount
        }
        commits(last: 1) {
          nodes {
            commit {
              statusCheckRollup {
                state
              }
            }
          }
        }
      }
    }
  }
}
"""

ISSUES_SEARCH_QUERY = """
query($searchQuery: String!, $first: Int!) {
  search(query: $searchQuery, type: ISSUE, first: $first) {
    nodes {
      ... on Issue {
        id
        title
        body
        number
        url
        createdAt
        updatedAt
        repository {
          nameWithOwner
        }
      }
    }
  }
}
"""

VIEWER_LOGIN_QUERY = """
query {
  viewer {
    login
  }
}
"""


class GitHubAPIError(Exception):
    """Error from GitHub API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""
    def __init__(self, reset_time: int | None = None):
        super().__init__("GitHub API rate limit exceeded", 403)
        self.reset_time = reset_time


class GitHubClient:
    """GitHub GraphQL client bound to one OAuth token."""

    def __init__(self, token: str, config: GitHubConfig | None = None):
        self.config = config or GitHubConfig()
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.headers["Content-Type"] = "application/json"
        self.session.headers["User-Agent"] = self.config.user_agent

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, payload: dict[str, Any]) -> requests.Response:
        """POST a GraphQL payload with retry and rate limit handling."""
        for attempt in range(MAX_RETRIES):
            try:
                response = self.session.post(
                    self.config.graphql_url,
                    data=json.dumps(payload),
                    timeout=self.config.timeout,
                )
            except requests.RequestException as e:
                if attempt < MAX_RETRIES - 1:
                    time.sleep(RETRY_DELAY * (attempt + 1))
                    continue
                raise GitHubAPIError(f"Request failed: {e}") from e

            if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
                try:
                    reset_time: int | None = int(response.headers.get("X-RateLimit-Reset", 0))
                except ValueError:
                    reset_time = None
                raise RateLimitError(reset_time)

            if response.status_code >= 400:
                raise GitHubAPIError(
                    f"GitHub API error: {response.status_code} - {response.text[:200]}",
                    response.status_code
                )

            return response

        raise GitHubAPIError("Max retries exceeded")

    def query(self, document: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL query and return its `data` payload."""
        response = self._request({"query": document, "variables": variables or {}})
        try:
            result = response.json()
        except ValueError as e:
            raise GitHubAPIError("GitHub returned a non-JSON response", response.status_code) from e

        if not isinstance(result, dict):
            raise GitHubAPIError("GitHub returned an unexpected payload", response.status_code)

        errors = result.get("errors")
        if errors:
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in errors
            )
            raise GitHubAPIError(f"GraphQL errors: {messages}", response.status_code)

        data = result.get("data")
        if not isinstance(data, dict):
            raise GitHubAPIError("GraphQL response has no data", response.status_code)
        return data

    def viewer_login(self) -> str | None:
        data = self.query(VIEWER_LOGIN_QUERY)
        with _payload_errors("viewer"):
            return (data.get("viewer") or {}).get("login")

    def open_pull_requests(self) -> list[UpstreamItem]:
        """Open pull requests authored by the viewer."""
        data = self.query(PULL_REQUESTS_QUERY, {"first": self.config.page_size})
        with _payload_errors("pullRequests"):
            connection = (data.get("viewer") or {}).get("pullRequests") or {}
            return _parse_nodes(connection.get("nodes"))

    def search_issues(self, search_query: str) -> list[UpstreamItem]:
        """Issues matching a GitHub search query."""
        data = self.query(
            ISSUES_SEARCH_QUERY,
            {"searchQuery": search_query, "first": self.config.page_size},
        )
        with _payload_errors("search"):
            return _parse_nodes((data.get("search") or {}).get("nodes"))


@contextmanager
def _payload_errors(section: str) -> Generator[None, None, None]:
    """Re-raise shape errors in a GraphQL payload as GitHubAPIError."""
    try:
        yield
    except (TypeError, ValueError, AttributeError) as e:
        raise GitHubAPIError(f"Malformed {section} payload: {e}") from e


def _parse_nodes(nodes: Any) -> list[UpstreamItem]:
    # search() yields empty objects for non-Issue nodes
    return [UpstreamItem.from_node(node) for node in nodes or [] if node and node.get("id")]


def merge_by_id(*batches: list[UpstreamItem]) -> list[UpstreamItem]:
    """Merge result batches by node id; later batches win on collision.

    Colliding items keep the position of their first occurrence.
    """
    merged: dict[str, UpstreamItem] = {}
    for batch in batches:
        for item in batch:
            if item.id:
                merged[item.id] = item
    return list(merged.values())


class UpstreamFetcher:
    """Read-through cached access to a user's open PRs and issues."""

    def __init__(
        self,
        cache: KVCache,
        config: GitHubConfig | None = None,
        ttl: int = DEFAULT_CACHE_TTL,
        client_factory: Callable[[str, GitHubConfig], GitHubClient] | None = None,
    ):
        self.cache = cache
        self.config = config or GitHubConfig()
        self.ttl = ttl
        self._client_factory = client_factory or GitHubClient

    @staticmethod
    def cache_key(kind: str, user_key: str) -> str:
        return f"{kind}:{user_key}"

    def _client(self, credential: str) -> GitHubClient:
        return self._client_factory(credential, self.config)

    def _read_cache(self, key: str) -> list[UpstreamItem] | None:
        cached = self.cache.get(key)
        if cached is None:
            return None
        try:
            return [UpstreamItem.from_node(node) for node in json.loads(cached)]
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("github.cache corrupt entry key={} error={}", key, e)
            self.cache.delete(key)
            return None

    def _write_cache(self, key: str, items: list[UpstreamItem]) -> None:
        self.cache.put(key, json.dumps([item.to_node() for item in items]), self.ttl)

    @staticmethod
    def _degrade(label: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run one upstream call; log and return None on failure."""
        try:
            return fn(*args)
        except GitHubAPIError as e:
            logger.warning("github.fetch failed query={} status={} error={}", label, e.status_code, e)
            return None

    async def fetch_pull_requests(self, credential: str, user_key: str) -> list[UpstreamItem]:
        cache_key = self.cache_key("prs", user_key)
        cached = await asyncio.to_thread(self._read_cache, cache_key)
        if cached is not None:
            logger.debug("github.cache hit key={} count={}", cache_key, len(cached))
            return cached

        with self._client(credential) as client:
            prs = await asyncio.to_thread(self._degrade, "pull_requests", client.open_pull_requests)
        prs = prs or []

        await asyncio.to_thread(self._write_cache, cache_key, prs)
        logger.info("github.fetch pull_requests user={} count={}", user_key, len(prs))
        return prs

    async def fetch_issues(
        self,
        credential: str,
        user_key: str,
        login: str | None = None,
    ) -> list[UpstreamItem]:
        """Issues assigned to the user plus issues in repos the user owns."""
        cache_key = self.cache_key("issues", user_key)
        cached = await asyncio.to_thread(self._read_cache, cache_key)
        if cached is not None:
            logger.debug("github.cache hit key={} count={}", cache_key, len(cached))
            return cached

        with self._client(credential) as client:
            if not login:
                login = await asyncio.to_thread(self._degrade, "viewer_login", client.viewer_login)
            if not login:
                logger.warning("github.fetch could not resolve viewer login user={}", user_key)
                return []

            assigned, owned = await asyncio.gather(
                asyncio.to_thread(
                    self._degrade, "issues_assigned", client.search_issues,
                    f"is:issue is:open assignee:{login}",
                ),
                asyncio.to_thread(
                    self._degrade, "issues_owned", client.search_issues,
                    f"is:issue is:open user:{login}",
                ),
            )
        issues = merge_by_id(assigned or [], owned or [])

        await asyncio.to_thread(self._write_cache, cache_key, issues)
        logger.info("github.fetch issues user={} count={}", user_key, len(issues))
        return issues

    def invalidate(self, user_key: str) -> None:
        """Drop both upstream cache entries so the next listing refetches."""
        self.cache.delete(self.cache_key("prs", user_key))
        self.cache.delete(self.cache_key("issues", user_key))
        logger.info("github.cache invalidated user={}", user_key)
