"""Push channel endpoints: the /socket.io session and its status probe.

A session is accepted only with a valid JWT in ?token=. The server speaks
JSON frames {"event": ..., "data": ...}: it greets with "connected", answers
"ping" with "pong", and otherwise only pushes change events.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from reelsync.api.v1.dependencies import get_ws_manager, principal_from_token
from reelsync.api.websocket.manager import ConnectionManager
from reelsync.core.constants import (
    EVENT_CONNECTED,
    EVENT_PING,
    EVENT_PONG,
    SOCKET_PATH,
    TRANSPORT_WEBSOCKET,
    WS_POLICY_VIOLATION,
)
from reelsync.schemas.websocket import WebSocketStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()
socket_router = APIRouter()


async def _reject_websocket(websocket: WebSocket, reason: str) -> None:
    """Accept then immediately close with code/reason so client gets a proper close frame."""
    await websocket.accept()
    await websocket.close(code=WS_POLICY_VIOLATION, reason=reason)


@router.get("/ws/status", response_model=WebSocketStatusResponse)
async def websocket_status(
    manager: Annotated[ConnectionManager, Depends(get_ws_manager)],
) -> WebSocketStatusResponse:
    """Return the number of connected sessions on this worker."""
    return WebSocketStatusResponse(
        total_connections=await manager.get_connection_count(),
        path=SOCKET_PATH,
    )


@socket_router.websocket(SOCKET_PATH)
async def socket_endpoint(websocket: WebSocket) -> None:
    """Authenticate, register with the manager, and serve heartbeats until disconnect."""
    manager: ConnectionManager = websocket.app.state.ws_manager
    token = websocket.query_params.get("token")
    if not token:
        await _reject_websocket(websocket, "Missing token")
        return
    try:
        principal = principal_from_token(token)
    except ValueError:
        await _reject_websocket(websocket, "Invalid token")
        return

    sid = await manager.connect(websocket)
    logger.debug("Session %s belongs to user %s", sid, principal.user_id)
    try:
        await manager.send(
            websocket,
            {"event": EVENT_CONNECTED, "data": {"sid": sid, "transport": TRANSPORT_WEBSOCKET}},
        )
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON frame from %s", sid)
                continue
            event = frame.get("event") if isinstance(frame, dict) else None
            if event == EVENT_PING:
                await manager.send(websocket, {"event": EVENT_PONG, "data": {}})
            else:
                logger.debug("Ignoring client frame %r from %s", event, sid)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
