"""Change events: the typed notifications published after a committed mutation.

ChangeKind is a closed enum of "<resource>:<action>" wire names, so every
consumer (router table, emitter, tests) can check exhaustiveness against
it. ChangeEvent pairs a kind with its payload; construction validates that
the identifiers needed to compute affected cache keys are present.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from reelsync.core.constants import PARENT_PROJECT_FIELD
from reelsync.domain.enums import ChangeAction, ResourceKind
from reelsync.domain.exceptions import MalformedChangeEventException


class ChangeKind(str, Enum):
    """Every change event the server may publish."""

    PROJECT_CREATED = "project:created"
    PROJECT_UPDATED = "project:updated"
    PROJECT_DELETED = "project:deleted"
    COMMENT_CREATED = "comment:created"
    COMMENT_UPDATED = "comment:updated"
    COMMENT_DELETED = "comment:deleted"
    NOTE_CREATED = "note:created"
    NOTE_UPDATED = "note:updated"
    NOTE_DELETED = "note:deleted"
    NPS_RESPONSE_CREATED = "nps-response:created"
    STATUS_LOG_CREATED = "status-log:created"
    PROJECT_MUSIC_CREATED = "project-music:created"
    PROJECT_MUSIC_UPDATED = "project-music:updated"
    PROJECT_MUSIC_DELETED = "project-music:deleted"
    PROJECT_VOICE_CREATED = "project-voice:created"
    PROJECT_VOICE_UPDATED = "project-voice:updated"
    PROJECT_VOICE_DELETED = "project-voice:deleted"

    @property
    def resource(self) -> ResourceKind:
        return ResourceKind(self.value.split(":", 1)[0])

    @property
    def action(self) -> ChangeAction:
        return ChangeAction(self.value.split(":", 1)[1])

    @classmethod
    def parse(cls, name: str) -> ChangeKind:
        """Return the kind for a wire name; raise MalformedChangeEventException if unknown."""
        try:
            return cls(name)
        except ValueError:
            raise MalformedChangeEventException(name, "unknown event kind") from None


# Resources whose payload must name the parent project.
CHILD_RESOURCES: frozenset[ResourceKind] = frozenset({
    ResourceKind.COMMENT,
    ResourceKind.NPS_RESPONSE,
    ResourceKind.STATUS_LOG,
    ResourceKind.PROJECT_MUSIC,
    ResourceKind.PROJECT_VOICE,
})


def required_fields(kind: ChangeKind) -> tuple[str, ...]:
    """Payload fields that must be present and non-empty for kind."""
    if kind.resource in CHILD_RESOURCES:
        return ("id", PARENT_PROJECT_FIELD)
    return ("id",)


@dataclass(frozen=True)
class ChangeEvent:
    """A committed mutation, as seen on the wire.

    payload always carries "id" (the affected resource) and, for child
    resources, "projectId". It may carry the full resource under the
    resource name (e.g. {"id": "p1", "project": {...}}).
    """

    kind: ChangeKind
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.payload, Mapping):
            raise MalformedChangeEventException(self.kind.value, "payload must be an object")
        for name in required_fields(self.kind):
            value = self.payload.get(name)
            if value is None or value == "":
                raise MalformedChangeEventException(
                    self.kind.value, f"missing field {name!r}"
                )

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def resource(self) -> ResourceKind:
        return self.kind.resource

    @property
    def action(self) -> ChangeAction:
        return self.kind.action

    @property
    def resource_id(self) -> str:
        return str(self.payload["id"])

    @property
    def project_id(self) -> str | None:
        """Project the change belongs to (the resource itself for project events)."""
        if self.resource is ResourceKind.PROJECT:
            return self.resource_id
        value = self.payload.get(PARENT_PROJECT_FIELD)
        return str(value) if value is not None else None

    def to_wire(self) -> dict[str, Any]:
        """Serialize as a socket frame: {"event": name, "data": payload}."""
        return {"event": self.name, "data": dict(self.payload)}

    @classmethod
    def from_wire(cls, name: str, data: Any) -> ChangeEvent:
        """Parse a socket frame; raise MalformedChangeEventException on bad input."""
        kind = ChangeKind.parse(name)
        if not isinstance(data, Mapping):
            raise MalformedChangeEventException(name, "payload must be an object")
        return cls(kind=kind, payload=dict(data))

    @classmethod
    def from_frame(cls, frame: Any) -> ChangeEvent:
        """Parse a full frame dict (as stored on the Redis channel)."""
        if not isinstance(frame, Mapping) or "event" not in frame:
            raise MalformedChangeEventException(str(frame)[:40], "frame must carry 'event'")
        return cls.from_wire(str(frame["event"]), frame.get("data"))
