"""
wiptrack CLI.

Commands:
    init      - Write a sample wiptrack.yml
    web       - Run the API server
    session   - Mint a session cookie for a GitHub token (local use)
    items     - Print the reconciled worklist
    snapshot  - Print the last published snapshot as markdown
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import click
from dotenv import load_dotenv

load_dotenv()
load_dotenv(Path.cwd() / ".env")

from . import __version__
from .config import CONFIG_FILENAME, CONFIG_ROOT_ENV, WiptrackConfig, get_config_root
from .snapshot import group_by_priority, item_badges, render_markdown
from .store import Store
from .web.session import Session, encode_session
from .worklist import Worklist


SAMPLE_CONFIG = """\
# wiptrack configuration

# GitHub GraphQL API
github:
  timeout: 15          # seconds per request
  page_size: 100       # max PRs / issues per query

# Caches
cache:
  backend: memory      # memory (single process) or sqlite (shared)
  upstream_ttl: 300    # GitHub results, seconds
  snapshot_ttl: 3600   # MCP snapshot, seconds

# Auto-classification for items you haven't prioritized.
# First matching rule wins; everything else is "low".
rules:
  # uber: a home repo AND a title keyword
  home_repos:
    - home-assistant/core
  keywords:
    - teslemetry
  # high: any repo under these owners
  priority_owners:
    - teslemetry
  # normal: any other repo under these owners
  home_owners:
    - home-assistant

server:
  host: 127.0.0.1
  port: 8787

# database: ~/.wiptrack/wiptrack.db
"""


def _load_config(config_root: str | None) -> WiptrackConfig:
    if config_root:
        os.environ[CONFIG_ROOT_ENV] = str(Path(config_root).expanduser().resolve())
    try:
        return WiptrackConfig.load()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


config_root_option = click.option(
    "--config-root",
    "config_root",
    default=None,
    help=f"Directory containing {CONFIG_FILENAME}",
)


@click.group()
@click.version_option(version=__version__)
def main():
    """wiptrack - One prioritized worklist for your GitHub PRs and issues."""
    pass


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@config_root_option
def init(force: bool, config_root: str | None):
    """Write a sample wiptrack.yml and create the database."""
    root = Path(config_root).expanduser().resolve() if config_root else get_config_root()
    click.echo(f"Initializing wiptrack in: {root}")

    config_path = root / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    config = WiptrackConfig.load(root)
    store = Store(db_path=config.db_path)
    click.echo(f"  Database: {store.db_path}")

    click.echo("\nNext steps:")
    click.echo("  1. Edit wiptrack.yml classification rules")
    click.echo("  2. Set WIPTRACK_SESSION_SECRET (e.g. in .env)")
    click.echo("  3. Run: wiptrack web")


@main.command("web")
@click.option("--host", default=None, help="Bind address (default: server.host from config)")
@click.option("--port", default=None, type=int, help="Port (default: server.port from config)")
@config_root_option
def run_web(host: str | None, port: int | None, config_root: str | None) -> None:
    """Run the wiptrack API server (foreground)."""
    from .web.server import run_server

    config = _load_config(config_root)
    host = host or config.server.host
    port = port or config.server.port
    click.echo(f"Starting wiptrack server at http://{host}:{port} (Ctrl+C to stop)")
    run_server(host=host, port=port)


@main.command("session")
@click.option("--token", envvar="GITHUB_TOKEN", required=True, help="GitHub token (env: GITHUB_TOKEN)")
@click.option("--user-id", required=True, help="Stable GitHub user id")
@click.option("--username", default="", help="GitHub login")
@config_root_option
def make_session(token: str, user_id: str, username: str, config_root: str | None) -> None:
    """Print a signed session cookie value for local use."""
    config = _load_config(config_root)
    try:
        value = encode_session(Session(access_token=token, user_id=user_id, username=username), config.session.secret)
    except ValueError as exc:
        raise click.ClickException(f"{exc}. Set WIPTRACK_SESSION_SECRET.") from exc
    click.echo(f"{config.session.cookie_name}={value}")


@main.command("items")
@click.option("--token", envvar="GITHUB_TOKEN", required=True, help="GitHub token (env: GITHUB_TOKEN)")
@click.option("--user-id", required=True, help="Stable GitHub user id")
@click.option("--login", default=None, help="GitHub login (skips the viewer lookup)")
@click.option("--all", "show_hidden", is_flag=True, help="Include hidden items")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@config_root_option
def list_items(
    token: str,
    user_id: str,
    login: str | None,
    show_hidden: bool,
    as_json: bool,
    config_root: str | None,
) -> None:
    """Fetch, reconcile and print the worklist (also publishes a snapshot)."""
    config = _load_config(config_root)
    worklist = Worklist.from_config(config)

    items = asyncio.run(worklist.list_items(token, user_id, login=login))
    worklist.publish_snapshot(user_id, items)

    if as_json:
        click.echo(json.dumps([item.to_dict() for item in items], indent=2))
        return

    visible = items if show_hidden else [item for item in items if not item.hidden]
    if not visible:
        click.echo("No open pull requests or issues.")
        return

    current = None
    for item in visible:
        if item.priority_name != current:
            current = item.priority_name
            click.echo(f"\n{current.upper()}")
        badges = item_badges(item)
        badge_str = f"  [{', '.join(badges)}]" if badges else ""
        hidden_str = " (hidden)" if item.hidden else ""
        kind = "PR" if item.type == "pr" else "Issue"
        click.echo(f"  {kind:<5} {item.repo}#{item.number}: {item.title}{badge_str}{hidden_str}")


@main.command("snapshot")
@click.option("--user-id", required=True, help="Stable GitHub user id")
@config_root_option
def show_snapshot(user_id: str, config_root: str | None) -> None:
    """Print the last published snapshot (needs the sqlite cache backend)."""
    config = _load_config(config_root)
    worklist = Worklist.from_config(config)
    items = worklist.publisher.latest(user_id)
    if items is None:
        click.echo("No snapshot published for this user. Run: wiptrack items")
        return
    click.echo(render_markdown(group_by_priority(items)))
