from __future__ import annotations

import asyncio
import json
import threading
from unittest.mock import Mock, patch

import pytest
import requests

from wiptrack.cache import MemoryCache
from wiptrack.config import GitHubConfig
from wiptrack.github import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    UpstreamFetcher,
    merge_by_id,
)
from wiptrack.models import UpstreamItem


def make_node(node_id: str, number: int, repo: str = "acme/core", title: str = "Item") -> dict:
    return {
        "id": node_id,
        "title": title,
        "body": None,
        "number": number,
        "url": f"https://github.com/{repo}/issues/{number}",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
        "repository": {"nameWithOwner": repo},
    }


def make_item(node_id: str, number: int, **kwargs) -> UpstreamItem:
    return UpstreamItem.from_node(make_node(node_id, number, **kwargs))


def mock_response(status_code: int = 200, payload: object = None, headers: dict | None = None) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = json.dumps(payload)
    response.json.return_value = payload
    return response


class FakeClient:
    """Stands in for GitHubClient; records every upstream call."""

    def __init__(self, prs=None, assigned=None, owned=None, login="octocat", fail=()):
        self.prs = prs or []
        self.assigned = assigned or []
        self.owned = owned or []
        self.login = login
        self.fail = set(fail)
        self.calls: list[str] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise GitHubAPIError("GitHub API error: 500 - boom", 500)

    def viewer_login(self):
        self._maybe_fail("viewer_login")
        return self.login

    def open_pull_requests(self):
        self._maybe_fail("open_pull_requests")
        return list(self.prs)

    def search_issues(self, search_query: str):
        if "assignee:" in search_query:
            self._maybe_fail("assigned")
            return list(self.assigned)
        self._maybe_fail("owned")
        return list(self.owned)


def make_fetcher(client: FakeClient, cache: MemoryCache | None = None) -> UpstreamFetcher:
    return UpstreamFetcher(cache or MemoryCache(), client_factory=lambda token, config: client)


# =========================================================================
# GitHubClient
# =========================================================================


def test_query_returns_data_payload():
    client = GitHubClient(token="test-token")
    response = mock_response(payload={"data": {"viewer": {"login": "octocat"}}})

    with patch.object(client.session, "post", return_value=response) as post:
        assert client.viewer_login() == "octocat"

    _, kwargs = post.call_args
    assert kwargs["timeout"] == GitHubConfig().timeout
    assert client.session.headers["Authorization"] == "Bearer test-token"


def test_query_raises_on_graphql_errors():
    client = GitHubClient(token="test-token")
    response = mock_response(payload={"errors": [{"message": "Bad credentials"}]})

    with patch.object(client.session, "post", return_value=response):
        with pytest.raises(GitHubAPIError, match="Bad credentials"):
            client.query("query { viewer { login } }")


def test_query_raises_on_http_error():
    client = GitHubClient(token="test-token")

    with patch.object(client.session, "post", return_value=mock_response(502, {"message": "bad gateway"})):
        with pytest.raises(GitHubAPIError) as exc_info:
            client.query("query { viewer { login } }")

    assert exc_info.value.status_code == 502


def test_query_detects_rate_limit():
    client = GitHubClient(token="test-token")
    response = mock_response(
        403,
        {"message": "rate limited"},
        headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
    )

    with patch.object(client.session, "post", return_value=response):
        with pytest.raises(RateLimitError) as exc_info:
            client.query("query { viewer { login } }")

    assert exc_info.value.reset_time == 1700000000


def test_transport_error_retries_then_raises():
    client = GitHubClient(token="test-token")

    with patch.object(client.session, "post", side_effect=requests.ConnectionError("down")) as post, \
            patch("wiptrack.github.time.sleep"):
        with pytest.raises(GitHubAPIError, match="Request failed"):
            client.query("query { viewer { login } }")

    assert post.call_count == 2


def test_search_issues_skips_non_issue_nodes():
    client = GitHubClient(token="test-token")
    payload = {"data": {"search": {"nodes": [make_node("I_1", 1), {}, None]}}}

    with patch.object(client.session, "post", return_value=mock_response(payload=payload)):
        issues = client.search_issues("is:issue is:open assignee:octocat")

    assert [issue.id for issue in issues] == ["I_1"]


def test_open_pull_requests_parses_metadata():
    client = GitHubClient(token="test-token")
    node = make_node("PR_1", 7)
    node["mergeable"] = "CONFLICTING"
    node["commits"] = {"nodes": [{"commit": {"statusCheckRollup": {"state": "SUCCESS"}}}]}
    payload = {"data": {"viewer": {"pullRequests": {"nodes": [node]}}}}

    with patch.object(client.session, "post", return_value=mock_response(payload=payload)):
        prs = client.open_pull_requests()

    assert prs[0].mergeable == "CONFLICTING"
    assert prs[0].check_state == "SUCCESS"


# =========================================================================
# UpstreamFetcher
# =========================================================================


def test_merge_by_id_later_batch_wins():
    first = [make_item("I_1", 1, title="assigned copy"), make_item("I_2", 2)]
    second = [make_item("I_3", 3), make_item("I_1", 1, title="owned copy")]

    merged = merge_by_id(first, second)

    assert [item.id for item in merged] == ["I_1", "I_2", "I_3"]
    assert merged[0].title == "owned copy"


def test_fetch_issues_dedupes_overlapping_queries():
    shared = make_item("I_1", 1)
    client = FakeClient(assigned=[shared, make_item("I_2", 2)], owned=[shared])
    fetcher = make_fetcher(client)

    issues = asyncio.run(fetcher.fetch_issues("token", "42"))

    assert [issue.id for issue in issues] == ["I_1", "I_2"]


def test_fetch_issues_uses_known_login_without_viewer_query():
    client = FakeClient(assigned=[make_item("I_1", 1)])
    fetcher = make_fetcher(client)

    asyncio.run(fetcher.fetch_issues("token", "42", login="octocat"))

    assert "viewer_login" not in client.calls


def test_fetch_issues_without_login_returns_empty_uncached():
    cache = MemoryCache()
    client = FakeClient(login=None)
    fetcher = make_fetcher(client, cache)

    assert asyncio.run(fetcher.fetch_issues("token", "42")) == []
    assert cache.get("issues:42") is None


def test_cache_hit_skips_upstream():
    client = FakeClient(prs=[make_item("PR_1", 1)])
    fetcher = make_fetcher(client)

    first = asyncio.run(fetcher.fetch_pull_requests("token", "42"))
    second = asyncio.run(fetcher.fetch_pull_requests("token", "42"))

    assert first == second
    assert client.calls == ["open_pull_requests"]


def test_cached_empty_result_still_short_circuits():
    client = FakeClient()
    fetcher = make_fetcher(client)

    asyncio.run(fetcher.fetch_pull_requests("token", "42"))
    asyncio.run(fetcher.fetch_pull_requests("token", "42"))

    assert client.calls == ["open_pull_requests"]


def test_cache_is_per_user():
    client = FakeClient(prs=[make_item("PR_1", 1)])
    fetcher = make_fetcher(client)

    asyncio.run(fetcher.fetch_pull_requests("token", "42"))
    asyncio.run(fetcher.fetch_pull_requests("token", "43"))

    assert client.calls == ["open_pull_requests", "open_pull_requests"]


def test_upstream_failure_degrades_to_empty():
    client = FakeClient(prs=[make_item("PR_1", 1)], fail={"open_pull_requests"})
    fetcher = make_fetcher(client)

    assert asyncio.run(fetcher.fetch_pull_requests("token", "42")) == []


def test_one_failed_issue_query_keeps_the_other():
    client = FakeClient(assigned=[make_item("I_1", 1)], owned=[make_item("I_2", 2)], fail={"assigned"})
    fetcher = make_fetcher(client)

    issues = asyncio.run(fetcher.fetch_issues("token", "42"))

    assert [issue.id for issue in issues] == ["I_2"]


def test_invalidate_forces_refetch():
    cache = MemoryCache()
    client = FakeClient(prs=[make_item("PR_1", 1)], assigned=[make_item("I_1", 1)])
    fetcher = make_fetcher(client, cache)

    asyncio.run(fetcher.fetch_pull_requests("token", "42"))
    asyncio.run(fetcher.fetch_issues("token", "42"))
    assert cache.get("prs:42") is not None
    assert cache.get("issues:42") is not None

    fetcher.invalidate("42")
    assert cache.get("prs:42") is None
    assert cache.get("issues:42") is None

    asyncio.run(fetcher.fetch_pull_requests("token", "42"))
    assert client.calls.count("open_pull_requests") == 2


def test_corrupt_cache_entry_is_refetched():
    cache = MemoryCache()
    cache.put("prs:42", "not json", ttl=300)
    client = FakeClient(prs=[make_item("PR_1", 1)])
    fetcher = make_fetcher(client, cache)

    prs = asyncio.run(fetcher.fetch_pull_requests("token", "42"))

    assert [pr.id for pr in prs] == ["PR_1"]


# =========================================================================
# Malformed payloads and resource handling
# =========================================================================


@pytest.mark.parametrize(
    "nodes",
    [
        [{"id": "PR_1", "number": None, "repository": {"nameWithOwner": "acme/core"}}],
        ["not-a-node"],
        {"id": "PR_1"},
    ],
)
def test_malformed_pull_request_nodes_raise_api_error(nodes):
    client = GitHubClient(token="test-token")
    payload = {"data": {"viewer": {"pullRequests": {"nodes": nodes}}}}

    with patch.object(client.session, "post", return_value=mock_response(payload=payload)):
        with pytest.raises(GitHubAPIError, match="Malformed"):
            client.open_pull_requests()


def test_malformed_viewer_payload_raises_api_error():
    client = GitHubClient(token="test-token")
    payload = {"data": {"viewer": ["octocat"]}}

    with patch.object(client.session, "post", return_value=mock_response(payload=payload)):
        with pytest.raises(GitHubAPIError):
            client.viewer_login()


def test_rate_limit_with_unparseable_reset_header():
    client = GitHubClient(token="test-token")
    response = mock_response(
        403,
        {"message": "rate limited"},
        headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "soon"},
    )

    with patch.object(client.session, "post", return_value=response):
        with pytest.raises(RateLimitError) as exc_info:
            client.query("query { viewer { login } }")

    assert exc_info.value.reset_time is None


def test_malformed_pull_requests_degrade_to_empty_listing():
    payload = {"data": {"viewer": {"pullRequests": {"nodes": [{"id": "x", "number": None}]}}}}
    fetcher = UpstreamFetcher(MemoryCache())

    with patch("wiptrack.github.requests.Session.post", return_value=mock_response(payload=payload)):
        prs = asyncio.run(fetcher.fetch_pull_requests("token", "42"))

    assert prs == []


def test_client_closes_its_session():
    client = GitHubClient(token="test-token")

    with patch.object(client.session, "close") as close:
        with client:
            pass

    close.assert_called_once_with()


def test_fetcher_closes_client_after_use():
    pr_client = FakeClient(prs=[make_item("PR_1", 1)])
    issue_client = FakeClient(assigned=[make_item("I_1", 1)])

    asyncio.run(make_fetcher(pr_client).fetch_pull_requests("token", "42"))
    asyncio.run(make_fetcher(issue_client).fetch_issues("token", "42"))

    assert pr_client.closed is True
    assert issue_client.closed is True


def test_cache_io_runs_off_the_event_loop_thread():
    loop_threads: list[int] = []
    cache_threads: list[int] = []

    class RecordingCache(MemoryCache):
        def get(self, key):
            cache_threads.append(threading.get_ident())
            return super().get(key)

        def put(self, key, value, ttl):
            cache_threads.append(threading.get_ident())
            super().put(key, value, ttl)

    async def fetch(fetcher):
        loop_threads.append(threading.get_ident())
        return await fetcher.fetch_pull_requests("token", "42")

    fetcher = make_fetcher(FakeClient(prs=[make_item("PR_1", 1)]), RecordingCache())
    asyncio.run(fetch(fetcher))

    assert len(cache_threads) == 2
    assert loop_threads[0] not in cache_threads
