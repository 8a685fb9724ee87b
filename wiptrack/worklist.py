"""
Worklist service: fetch, reconcile, publish.
"""

from __future__ import annotations

import asyncio
import time

from loguru import logger

from .cache import KVCache, build_cache
from .config import ClassificationRules, WiptrackConfig
from .github import UpstreamFetcher
from .models import CanonicalItem
from .mutations import MutationGateway
from .reconcile import index_overrides, reconcile
from .snapshot import SnapshotPublisher
from .store import Store


class Worklist:
    """Builds a user's worklist from GitHub plus stored overrides."""

    def __init__(
        self,
        fetcher: UpstreamFetcher,
        store: Store,
        publisher: SnapshotPublisher,
        rules: ClassificationRules | None = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.publisher = publisher
        self.rules = rules or ClassificationRules()
        self.gateway = MutationGateway(store, fetcher)

    @classmethod
    def from_config(cls, config: WiptrackConfig, cache: KVCache | None = None) -> "Worklist":
        cache = cache or build_cache(config)
        return cls(
            fetcher=UpstreamFetcher(cache, config.github, ttl=config.cache.upstream_ttl),
            store=Store(db_path=config.db_path),
            publisher=SnapshotPublisher(cache, ttl=config.cache.snapshot_ttl),
            rules=config.rules,
        )

    async def list_items(
        self,
        credential: str,
        user_key: str,
        login: str | None = None,
    ) -> list[CanonicalItem]:
        """Full reconciled worklist; partial upstream failure yields fewer items."""
        started = time.perf_counter()
        prs, issues = await asyncio.gather(
            self.fetcher.fetch_pull_requests(credential, user_key),
            self.fetcher.fetch_issues(credential, user_key, login=login),
        )
        overrides = index_overrides(await asyncio.to_thread(self.store.get_overrides, user_key))
        items = reconcile(prs, issues, overrides, self.rules)
        logger.info(
            "worklist.listed user={} prs={} issues={} overrides={} items={} elapsed_s={:.3f}",
            user_key,
            len(prs),
            len(issues),
            len(overrides),
            len(items),
            time.perf_counter() - started,
        )
        return items

    def publish_snapshot(self, user_key: str, items: list[CanonicalItem]) -> None:
        """Publish for read-only consumers; failures are logged, not raised."""
        try:
            self.publisher.publish(user_key, items)
        except Exception as exc:  # noqa: BLE001
            logger.error("worklist.snapshot failed user={} error={}", user_key, exc)
