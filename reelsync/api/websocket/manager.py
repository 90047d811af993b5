"""WebSocket connection manager for the change-event push channel.

Holds every active client session in one global room and broadcasts change
events to all of them. Use via app.state.ws_manager (set in lifespan).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket sessions for change broadcasts.

    - All sessions share one room; broadcast reaches every session,
      including the one whose request produced the change.
    - Sessions that fail a send are dropped.
    - Connection tables are lock-protected for concurrent access.
    """

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._websocket_to_sid: dict[WebSocket, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str | None = None) -> str:
        """Accept and register a new session.

        Args:
            websocket: The WebSocket instance to accept and track.
            session_id: Optional id; a random one is generated when omitted.

        Returns:
            The session id the connection is registered under.
        """
        await websocket.accept()
        sid = session_id or uuid.uuid4().hex
        async with self._lock:
            self._connections[sid] = websocket
            self._websocket_to_sid[websocket] = sid
            total = len(self._connections)
        logger.info("Client connected | sid=%s | total=%s", sid, total)
        return sid

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a session (call on disconnect). No other cleanup is needed."""
        async with self._lock:
            sid = self._websocket_to_sid.pop(websocket, None)
            if sid is not None:
                self._connections.pop(sid, None)
            total = len(self._connections)
        if sid is not None:
            logger.info("Client disconnected | sid=%s | total=%s", sid, total)

    async def send(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        """Send one frame to one session (e.g. pong)."""
        await websocket.send_json(message)

    async def broadcast(self, message: str | dict[str, Any]) -> int:
        """Send a message to every connected session.

        Args:
            message: String or JSON-serializable dict to send.

        Returns:
            Number of sessions the message was delivered to.
        """
        async with self._lock:
            snapshot = list(self._connections.values())
        if not snapshot:
            logger.debug("No connected clients; dropping broadcast")
            return 0
        return await self._send_to_list(snapshot, message)

    async def _send_to_list(
        self,
        connections: list[WebSocket],
        message: str | dict[str, Any],
    ) -> int:
        """Send message to a list of connections; remove dead ones under lock."""
        dead: list[WebSocket] = []
        for ws in connections:
            try:
                if isinstance(message, dict):
                    await ws.send_json(message)
                else:
                    await ws.send_text(message)
            except Exception:
                logger.debug("Send failed; dropping connection", exc_info=True)
                dead.append(ws)
        if dead:
            async with self._lock:
                for ws in dead:
                    sid = self._websocket_to_sid.pop(ws, None)
                    if sid is not None:
                        self._connections.pop(sid, None)
        return len(connections) - len(dead)

    async def get_connection_count(self) -> int:
        """Return the total number of active connections (lock-safe)."""
        async with self._lock:
            return len(self._connections)
