"""
Collaboration transport and query surface.

WebSocket:
  /ws/collaboration  -- JSON envelopes {"event": <name>, "data": {...}} both ways.
                        Inbound event names are listed in realtime.handler.

HTTP:
  GET  /trips/{trip_id}/activity?limit=20   -- recent activity, newest first
  GET  /trips/{trip_id}/presence            -- current presence entries
  POST /trips/{trip_id}/system-message      -- push a system-message to the room
  GET  /collaboration/status                -- feature list + local counters
  GET  /collaboration/health                -- liveness incl. Redis ping

The process-wide CollaborationService lives on app.state.collab (built in
the lifespan). Messages on a single socket are handled strictly in arrival
order: the receive loop awaits each dispatch before reading the next frame.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect, WebSocketState

from services.collab.realtime.schemas import SystemMessageRequest, utc_now_iso
from services.collab.realtime.service import CollaborationService
from services.collab.routers.health import redis_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=["collaboration"])

FEATURES = {
    "realtime": "WebSocket event transport",
    "presence": "User presence tracking",
    "cursors": "Real-time cursor sharing",
    "comments": "Collaborative commenting",
    "multiInstance": "Redis pub/sub fanout",
}

MAX_ACTIVITY_LIMIT = 50


# ---------------------------------------------------------------------------
# Transport adapter
# ---------------------------------------------------------------------------


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the rooms.Connection protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex
        self._websocket = websocket

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if not _is_open(self._websocket):
            return
        await self._websocket.send_json({"event": event, "data": data})


def _frame_text(message: dict[str, Any]) -> str | None:
    """Text of a websocket.receive message; binary frames are read as UTF-8."""
    if message.get("text") is not None:
        return message["text"]
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_collab(request: Request) -> CollaborationService:
    collab = getattr(request.app.state, "collab", None)
    if collab is None:
        raise HTTPException(
            status_code=503,
            detail={
                "success": False,
                "error": {
                    "code": "SERVICE_UNAVAILABLE",
                    "message": "Collaboration service is not ready.",
                },
            },
        )
    return collab


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class CollabResponse(BaseModel):
    success: bool
    data: dict
    requestId: str


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


@router.websocket("/ws/collaboration")
async def collaboration_socket(websocket: WebSocket) -> None:
    collab: CollaborationService | None = getattr(websocket.app.state, "collab", None)
    if collab is None:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    handler = collab.open_session(connection)

    try:
        while not handler.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(
                    "socket disconnected: connection=%s code=%s", connection.id, message.get("code")
                )
                break
            raw = _frame_text(message)
            if raw is None:
                await connection.send("error", {"message": "Malformed message"})
                continue
            await handler.handle_text(raw)
    except WebSocketDisconnect as exc:
        logger.debug("socket disconnected: connection=%s code=%s", connection.id, exc.code)
    finally:
        await handler.disconnect()

    if _is_open(websocket):
        await websocket.close()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@router.get("/trips/{trip_id}/activity", response_model=CollabResponse)
async def trip_activity(
    trip_id: str,
    request: Request,
    limit: int = Query(default=20, ge=1, le=MAX_ACTIVITY_LIMIT),
    collab: CollaborationService = Depends(get_collab),
) -> CollabResponse:
    entries = await collab.get_trip_activity(trip_id, limit)
    return CollabResponse(
        success=True,
        data={
            "tripId": trip_id,
            "activity": [e.model_dump() for e in entries],
            "count": len(entries),
        },
        requestId=_request_id(request),
    )


@router.get("/trips/{trip_id}/presence", response_model=CollabResponse)
async def trip_presence(
    trip_id: str,
    request: Request,
    collab: CollaborationService = Depends(get_collab),
) -> CollabResponse:
    entries = await collab.get_trip_presence(trip_id)
    return CollabResponse(
        success=True,
        data={
            "tripId": trip_id,
            "presence": [e.model_dump() for e in entries],
            "count": len(entries),
        },
        requestId=_request_id(request),
    )


@router.post("/trips/{trip_id}/system-message", response_model=CollabResponse)
async def trip_system_message(
    trip_id: str,
    body: SystemMessageRequest,
    request: Request,
    collab: CollaborationService = Depends(get_collab),
) -> CollabResponse:
    delivered = await collab.broadcast_system_message(trip_id, body.message)
    return CollabResponse(
        success=True,
        data={"tripId": trip_id, "localRecipients": delivered},
        requestId=_request_id(request),
    )


@router.get("/collaboration/status", response_model=CollabResponse)
async def collaboration_status(
    request: Request,
    collab: CollaborationService = Depends(get_collab),
) -> CollabResponse:
    return CollabResponse(
        success=True,
        data={
            "message": "Collaboration service is active",
            "features": FEATURES,
            "stats": collab.stats(),
            "timestamp": utc_now_iso(),
        },
        requestId=_request_id(request),
    )


@router.get("/collaboration/health", response_model=CollabResponse)
async def collaboration_health(request: Request) -> CollabResponse:
    redis = await redis_status(getattr(request.app.state, "redis", None))
    return CollabResponse(
        success=True,
        data={
            "healthy": True,
            "message": "Collaboration service is healthy",
            "redis": redis,
            "timestamp": utc_now_iso(),
        },
        requestId=_request_id(request),
    )
