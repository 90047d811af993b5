"""Domain layer: change events, enums, and exceptions. No I/O."""

from reelsync.domain.enums import (
    ChangeAction,
    ConnectionStatus,
    EntryState,
    ProjectStatus,
    ReconcileState,
    ResourceKind,
)
from reelsync.domain.events import ChangeEvent, ChangeKind
from reelsync.domain.exceptions import (
    AuthenticationException,
    MalformedChangeEventException,
    MutationFailedException,
    QueryFetchException,
    ReelSyncException,
    TransportClosedException,
    ValidationException,
)

__all__ = [
    "AuthenticationException",
    "ChangeAction",
    "ChangeEvent",
    "ChangeKind",
    "ConnectionStatus",
    "EntryState",
    "MalformedChangeEventException",
    "MutationFailedException",
    "ProjectStatus",
    "QueryFetchException",
    "ReconcileState",
    "ReelSyncException",
    "ResourceKind",
    "TransportClosedException",
    "ValidationException",
]
