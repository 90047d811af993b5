"""Application lifespan: startup and shutdown.

Wires the push-channel infrastructure only: connection manager, change
emitter, optional Redis fan-out task, and telemetry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from reelsync.core.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: WebSocket manager, Redis publisher and relay task (if
    enabled), change emitter. Shutdown reverses it and flushes telemetry
    spans (tracing itself is installed by create_app).
    """
    settings = get_settings()

    # ---- Startup ----
    from reelsync.api.websocket import ConnectionManager
    from reelsync.application.emitter import ChangeEmitter

    app.state.ws_manager = ConnectionManager()
    app.state.change_publisher = None
    app.state.change_broadcast_task = None

    if settings.redis_enabled:
        from reelsync.infrastructure.messaging.redis_pubsub import (
            ChangePublisher,
            run_change_broadcast,
        )

        publisher = ChangePublisher()
        await publisher.connect()
        if publisher.is_available():
            app.state.change_publisher = publisher
            app.state.change_broadcast_task = asyncio.create_task(
                run_change_broadcast(app)
            )
        else:
            logger.warning("Redis unavailable; broadcasting change events in-process")

    app.state.change_emitter = ChangeEmitter(
        app.state.ws_manager, publisher=app.state.change_publisher
    )

    yield

    # ---- Shutdown ----
    broadcast_task = app.state.change_broadcast_task
    if broadcast_task is not None:
        broadcast_task.cancel()
        try:
            await broadcast_task
        except asyncio.CancelledError:
            pass
        logger.info("Change broadcast task stopped")

    if app.state.change_publisher is not None:
        await app.state.change_publisher.disconnect()

    from reelsync.shared.telemetry.telemetry import get_telemetry, set_telemetry

    telemetry_instance = get_telemetry()
    if telemetry_instance is not None:
        telemetry_instance.shutdown()
        set_telemetry(None)
        logger.info("Telemetry shutdown complete")
