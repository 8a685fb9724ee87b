"""
MCP (JSON-RPC 2.0) endpoint exposing the published worklist snapshot.

Unauthenticated and read-only: the only tool, get_work_items, returns the
last snapshot published for a user id, hidden items removed, grouped by
priority.
"""

from __future__ import annotations

from typing import Any

from .. import __version__
from ..snapshot import SnapshotPublisher, group_by_priority, render_markdown


PROTOCOL_VERSION = "2025-03-26"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602

SERVER_INFO = {
    "name": "wiptrack",
    "version": __version__,
}

TOOLS = [
    {
        "name": "get_work_items",
        "description": (
            "Get all work-in-progress items (PRs and issues) sorted by priority. "
            "Returns items grouped by priority level: uber, high, normal, low, meh. "
            "Each item includes title, repo, URL, type (PR/issue), CI status, "
            "merge conflict status, and review status."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "user_id": {
                    "type": "string",
                    "description": "GitHub user ID to fetch items for",
                },
            },
            "required": ["user_id"],
        },
    },
]

NO_SNAPSHOT_TEXT = (
    "No cached items found for this user. "
    "The user needs to log in and load their items first."
)


def rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def get_work_items(publisher: SnapshotPublisher, user_id: str) -> dict[str, Any]:
    items = publisher.latest(user_id)
    if items is None:
        return {"content": [{"type": "text", "text": NO_SNAPSHOT_TEXT}]}

    groups = group_by_priority(items)
    return {
        "content": [{"type": "text", "text": render_markdown(groups)}],
        "structuredContent": {
            "groups": {name: [item.to_dict() for item in members] for name, members in groups.items()},
        },
    }


def is_valid_request(body: Any) -> bool:
    return isinstance(body, dict) and body.get("jsonrpc") == "2.0" and isinstance(body.get("method"), str)


def handle_mcp_request(body: dict[str, Any], publisher: SnapshotPublisher) -> dict[str, Any]:
    """Dispatch one validated JSON-RPC request."""
    request_id = body.get("id")
    method = body["method"]
    params = body.get("params") or {}

    if method == "initialize":
        return rpc_result(request_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": SERVER_INFO,
        })

    if method in ("notifications/initialized", "ping"):
        return rpc_result(request_id, {})

    if method == "tools/list":
        return rpc_result(request_id, {"tools": TOOLS})

    if method == "tools/call":
        tool_name = params.get("name") if isinstance(params, dict) else None
        if tool_name != "get_work_items":
            return rpc_error(request_id, INVALID_PARAMS, f"Unknown tool: {tool_name}")
        arguments = params.get("arguments") or {}
        user_id = arguments.get("user_id") if isinstance(arguments, dict) else None
        if not user_id:
            return rpc_error(request_id, INVALID_PARAMS, "user_id is required")
        return rpc_result(request_id, get_work_items(publisher, str(user_id)))

    return rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
