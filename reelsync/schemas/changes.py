"""Schemas for publishing change events over HTTP."""

from typing import Any

from pydantic import BaseModel, Field


class ChangePublishRequest(BaseModel):
    """A committed change reported by an out-of-process mutation handler."""

    event: str = Field(..., description="Event kind, e.g. 'project:updated'")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Payload with id (and projectId for child resources)",
    )


class ChangePublishResponse(BaseModel):
    """Publish is fire-and-forget.

    connections is read just before the event is handed off and counts only
    the sessions on the worker that answered. With Redis fan-out enabled,
    sessions on other workers receive the event but are not counted.
    """

    accepted: bool = True
    connections: int = Field(
        ...,
        description=(
            "Sessions connected to this worker when the event was accepted; "
            "other workers' sessions are not counted"
        ),
    )
