"""Publish endpoint for mutation handlers that run outside this process.

The caller must have committed the mutation before calling. Publishing is
fire-and-forget; the response only reports how many sessions were connected.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from reelsync.api.v1.dependencies import (
    Principal,
    get_current_principal,
    get_emitter,
    get_ws_manager,
)
from reelsync.api.websocket.manager import ConnectionManager
from reelsync.application.emitter import ChangeEmitter
from reelsync.domain.events import ChangeEvent
from reelsync.schemas.changes import ChangePublishRequest, ChangePublishResponse

router = APIRouter()


@router.post(
    "",
    response_model=ChangePublishResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def publish_change(
    body: ChangePublishRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    emitter: Annotated[ChangeEmitter, Depends(get_emitter)],
    manager: Annotated[ConnectionManager, Depends(get_ws_manager)],
) -> ChangePublishResponse:
    """Broadcast one change event.

    A malformed body raises MalformedChangeEventException (422) here; the
    emitter itself would only log and drop it. connections is read before
    delivery and counts only this worker's sessions.
    """
    event = ChangeEvent.from_wire(body.event, body.data)
    connections = await manager.get_connection_count()
    await emitter.publish(event.kind, event.payload)
    return ChangePublishResponse(connections=connections)
