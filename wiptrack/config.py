"""
Configuration management for wiptrack.

Loads and validates wiptrack.yml:
- github: GraphQL endpoint and request settings
- cache: cache backend and TTLs
- rules: auto-classification rules for items without a chosen priority
- server / session / database: web service settings

Secrets (the session secret) come from the environment, never the YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


CONFIG_FILENAME = "wiptrack.yml"
SESSION_SECRET_ENV = "WIPTRACK_SESSION_SECRET"
CONFIG_ROOT_ENV = "WIPTRACK_CONFIG_ROOT"


@dataclass
class GitHubConfig:
    """GitHub GraphQL API settings."""

    graphql_url: str = "https://api.github.com/graphql"
    timeout: float = 15.0
    user_agent: str = "wiptrack/0.1.0"
    page_size: int = 100


@dataclass
class CacheConfig:
    """Cache backend and TTLs (seconds)."""

    backend: str = "memory"  # memory, sqlite
    upstream_ttl: int = 300
    snapshot_ttl: int = 3600


@dataclass
class ClassificationRules:
    """Auto-classification rules, checked top to bottom, first match wins.

    - home_repos + keywords: title match inside a home repo -> uber
    - priority_owners: any repo under these owners -> high
    - home_owners: any repo under these owners -> normal
    - everything else -> low
    """

    home_repos: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    priority_owners: list[str] = field(default_factory=list)
    home_owners: list[str] = field(default_factory=list)


@dataclass
class ServerConfig:
    """API server bind address."""

    host: str = "127.0.0.1"
    port: int = 8787


@dataclass
class SessionConfig:
    """Session cookie settings."""

    cookie_name: str = "wip_session"
    secret: str = ""


@dataclass
class WiptrackConfig:
    """Complete wiptrack configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rules: ClassificationRules = field(default_factory=ClassificationRules)
    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    database: str | None = None
    config_root: Path | None = None

    @property
    def db_path(self) -> Path:
        if self.database:
            path = Path(self.database).expanduser()
            if not path.is_absolute() and self.config_root is not None:
                path = self.config_root / path
            return path.resolve()
        return get_wiptrack_dir() / "wiptrack.db"

    @classmethod
    def load(cls, config_root: Path | None = None) -> "WiptrackConfig":
        """Load configuration from the config root directory."""
        if config_root is None:
            config_root = get_config_root()
        config_root = config_root.resolve()

        config_path = config_root / CONFIG_FILENAME
        data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{config_path} must contain a mapping at the top level")

        config = cls._parse(data, config_root)
        config.session.secret = os.environ.get(SESSION_SECRET_ENV, "")
        return config

    @staticmethod
    def _str_list(raw: Any) -> list[str]:
        if raw is None:
            return []
        if isinstance(raw, str):
            return [raw]
        return [str(item) for item in raw if item is not None]

    @classmethod
    def _parse(cls, data: dict[str, Any], config_root: Path) -> "WiptrackConfig":
        config = cls(config_root=config_root)

        github_data = data.get("github") or {}
        config.github = GitHubConfig(
            graphql_url=github_data.get("graphql_url", "https://api.github.com/graphql"),
            timeout=float(github_data.get("timeout", 15.0)),
            user_agent=github_data.get("user_agent", "wiptrack/0.1.0"),
            page_size=int(github_data.get("page_size", 100)),
        )

        cache_data = data.get("cache") or {}
        backend = cache_data.get("backend", "memory")
        if backend not in ("memory", "sqlite"):
            raise ValueError(f"Unknown cache backend '{backend}' (expected memory or sqlite)")
        config.cache = CacheConfig(
            backend=backend,
            upstream_ttl=int(cache_data.get("upstream_ttl", 300)),
            snapshot_ttl=int(cache_data.get("snapshot_ttl", 3600)),
        )

        rules_data = data.get("rules") or {}
        config.rules = ClassificationRules(
            home_repos=cls._str_list(rules_data.get("home_repos")),
            keywords=cls._str_list(rules_data.get("keywords")),
            priority_owners=cls._str_list(rules_data.get("priority_owners")),
            home_owners=cls._str_list(rules_data.get("home_owners")),
        )

        server_data = data.get("server") or {}
        config.server = ServerConfig(
            host=server_data.get("host", "127.0.0.1"),
            port=int(server_data.get("port", 8787)),
        )

        session_data = data.get("session") or {}
        config.session = SessionConfig(
            cookie_name=session_data.get("cookie_name", "wip_session"),
        )

        config.database = data.get("database")
        return config


def get_config_root() -> Path:
    """Directory holding wiptrack.yml (env override, else cwd)."""

    forced_root = os.environ.get(CONFIG_ROOT_ENV)
    if forced_root:
        return Path(forced_root).expanduser().resolve()
    return Path.cwd()


def get_wiptrack_dir() -> Path:
    """Per-user state directory (~/.wiptrack)."""

    return Path.home() / ".wiptrack"


def ensure_wiptrack_dir() -> Path:
    """Ensure ~/.wiptrack exists and return its path."""

    wiptrack_dir = get_wiptrack_dir()
    wiptrack_dir.mkdir(parents=True, exist_ok=True)
    return wiptrack_dir
