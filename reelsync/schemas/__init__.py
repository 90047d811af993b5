"""API request/response schemas (Pydantic)."""

from reelsync.schemas.changes import ChangePublishRequest, ChangePublishResponse
from reelsync.schemas.health import HealthResponse
from reelsync.schemas.websocket import WebSocketStatusResponse

__all__ = [
    "ChangePublishRequest",
    "ChangePublishResponse",
    "HealthResponse",
    "WebSocketStatusResponse",
]
