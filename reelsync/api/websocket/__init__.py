"""WebSocket connection manager.

Used by the /socket.io endpoint and the change emitter to broadcast events.
"""

from reelsync.api.websocket.manager import ConnectionManager

__all__ = ["ConnectionManager"]
