"""FastAPI application entry point for the sync server.

Wiring only: logging, lifespan, exception handlers, CORS, routers and
tracing. The socket route lives at the root (/socket.io); HTTP routes are
under /api/v1.

Settings are loaded inside create_app() so that tests can set env (and
clear the get_settings cache) before creating the app.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reelsync.api.v1 import api_router, socket_router
from reelsync.core.config import get_settings
from reelsync.core.exception_handlers import register_exception_handlers
from reelsync.core.lifespan import create_lifespan
from reelsync.shared.telemetry.logging import setup_logging
from reelsync.shared.telemetry.telemetry import TelemetryConfig, set_telemetry


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    settings.require_secret_key()
    setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=create_lifespan,
    )

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.allowed_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")
    app.include_router(socket_router)

    if settings.telemetry_enabled:
        telemetry = TelemetryConfig.from_settings(settings)
        if telemetry.start(app, instrument_redis=settings.redis_enabled):
            set_telemetry(telemetry)

    return app


app = create_app()
