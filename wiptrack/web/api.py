"""
FastAPI transport layer for wiptrack.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..config import WiptrackConfig
from ..mutations import MutationError
from ..store import StoreError
from ..worklist import Worklist
from .mcp import INVALID_REQUEST, PARSE_ERROR, handle_mcp_request, is_valid_request, rpc_error
from .session import Session, decode_session


class ItemUpdateRequest(BaseModel):
    # Field types are validated by the mutation gateway, not coerced here
    priority: Any = None
    notes: Any = None
    hidden: Any = None


class BatchPriorityRequest(BaseModel):
    # Shape is checked by the mutation gateway so errors read the same everywhere
    items: Any = None


def create_app(config: WiptrackConfig | None = None, worklist: Worklist | None = None) -> FastAPI:
    config = config or WiptrackConfig.load()
    worklist = worklist or Worklist.from_config(config)
    gateway = worklist.gateway

    app = FastAPI(title="wiptrack", version=__version__)
    app.state.config = config
    app.state.worklist = worklist

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current_session(request: Request) -> Optional[Session]:
        return decode_session(request.cookies.get(config.session.cookie_name), config.session.secret)

    def require_session(session: Optional[Session] = Depends(current_session)) -> Session:
        if session is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return session

    # =========================================================================
    # Items
    # =========================================================================

    @app.get("/api/items")
    async def list_items(
        background_tasks: BackgroundTasks,
        session: Session = Depends(require_session),
    ) -> dict[str, Any]:
        try:
            items = await worklist.list_items(
                session.access_token,
                session.user_id,
                login=session.username or None,
            )
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        background_tasks.add_task(worklist.publish_snapshot, session.user_id, items)
        return {"items": [item.to_dict() for item in items]}

    @app.post("/api/items")
    async def refresh_items(session: Session = Depends(require_session)) -> dict[str, Any]:
        await asyncio.to_thread(gateway.refresh, session.user_id)
        return {"success": True}

    @app.post("/api/items/batch-priority")
    async def batch_priority(
        payload: BatchPriorityRequest,
        session: Session = Depends(require_session),
    ) -> dict[str, Any]:
        try:
            updated = await asyncio.to_thread(gateway.reorder, session.user_id, payload.items)
        except MutationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"success": True, "updated": updated}

    @app.post("/api/items/{item_id:path}/hide")
    async def hide_item(item_id: str, session: Session = Depends(require_session)) -> dict[str, Any]:
        try:
            await asyncio.to_thread(gateway.hide_item, session.user_id, item_id)
        except MutationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"success": True}

    @app.put("/api/items/{item_id:path}")
    async def update_item(
        item_id: str,
        payload: ItemUpdateRequest,
        session: Session = Depends(require_session),
    ) -> dict[str, Any]:
        try:
            override = await asyncio.to_thread(
                gateway.update_item, session.user_id, item_id, payload.model_dump(exclude_unset=True)
            )
        except MutationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {
            "success": True,
            "item": {
                "id": override.id,
                "priority": override.priority,
                "notes": override.notes,
                "hidden": override.hidden,
            },
        }

    # =========================================================================
    # Auth
    # =========================================================================

    @app.get("/auth/me")
    async def me(session: Optional[Session] = Depends(current_session)) -> dict[str, Any]:
        if session is None:
            return {"authenticated": False}
        return {"authenticated": True, "userId": session.user_id, "username": session.username}

    @app.post("/auth/logout")
    async def logout() -> JSONResponse:
        response = JSONResponse({"success": True})
        response.delete_cookie(config.session.cookie_name, path="/")
        return response

    # =========================================================================
    # MCP
    # =========================================================================

    @app.post("/mcp")
    async def mcp(request: Request) -> JSONResponse:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            return JSONResponse(
                rpc_error(None, PARSE_ERROR, "Content-Type must be application/json"),
                status_code=400,
            )
        try:
            body = json.loads(await request.body())
        except ValueError:
            return JSONResponse(rpc_error(None, PARSE_ERROR, "Parse error"), status_code=400)

        if not is_valid_request(body):
            request_id = body.get("id") if isinstance(body, dict) else None
            return JSONResponse(
                rpc_error(request_id, INVALID_REQUEST, "Invalid JSON-RPC request"),
                status_code=400,
            )

        logger.debug("mcp.request method={}", body["method"])
        return JSONResponse(await asyncio.to_thread(handle_mcp_request, body, worklist.publisher))

    @app.get("/mcp")
    async def mcp_info() -> PlainTextResponse:
        return PlainTextResponse("MCP endpoint. Use POST with JSON-RPC 2.0 messages.")

    return app
