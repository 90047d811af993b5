"""API dependencies (composition root): session principal and app-state services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reelsync.api.websocket.manager import ConnectionManager
from reelsync.application.emitter import ChangeEmitter

_http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as read from the session token."""

    user_id: str
    role: str | None = None


def principal_from_token(token: str) -> Principal:
    """Verify a JWT and return its principal; raise ValueError if invalid."""
    from reelsync.infrastructure.security.jwt import verify_token

    payload = verify_token(token)
    return Principal(user_id=str(payload["sub"]), role=payload.get("role"))


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_http_bearer)],
) -> Principal:
    """Return the caller from the bearer token; raise 401 if missing or invalid."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return principal_from_token(credentials.credentials)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token") from None


def get_ws_manager(request: Request) -> ConnectionManager:
    """Connection manager set in lifespan."""
    return request.app.state.ws_manager


def get_emitter(request: Request) -> ChangeEmitter:
    """Change emitter set in lifespan."""
    return request.app.state.change_emitter
