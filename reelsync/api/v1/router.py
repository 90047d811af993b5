"""API v1 router aggregation."""

from fastapi import APIRouter

from reelsync.api.v1.endpoints import changes, health, websocket as ws_endpoint

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(changes.router, prefix="/changes", tags=["changes"])
api_router.include_router(ws_endpoint.router, tags=["websocket"])
