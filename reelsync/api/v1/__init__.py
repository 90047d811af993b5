"""API v1: HTTP routes under /api/v1 and the root-level socket route."""

from reelsync.api.v1.endpoints.websocket import socket_router
from reelsync.api.v1.router import api_router

__all__ = ["api_router", "socket_router"]
