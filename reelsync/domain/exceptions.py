"""Domain exceptions for reelsync.

Defines the error taxonomy of the sync core. The presentation layer maps
them to HTTP responses in exception handlers; the client library surfaces
fetch and mutation failures through typed results carrying these objects.
"""

from typing import Any


class ReelSyncException(Exception):
    """Base exception for all reelsync errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. event name, cache key).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(ReelSyncException):
    """Raised when input validation fails (e.g. invalid format or range)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class AuthenticationException(ReelSyncException):
    """Raised when a session token is missing, invalid or expired."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, "AUTHENTICATION_ERROR")


class MalformedChangeEventException(ReelSyncException):
    """Raised when a change event has an unknown kind or lacks required identifiers."""

    def __init__(self, event_name: str, reason: str) -> None:
        """Initialize with the offending event name and the reason.

        Args:
            event_name: Wire name of the event (e.g. 'comment:created').
            reason: What is wrong (e.g. "missing field 'projectId'").
        """
        super().__init__(
            f"Malformed change event {event_name!r}: {reason}",
            "MALFORMED_CHANGE_EVENT",
            {"event": event_name, "reason": reason},
        )


class QueryFetchException(ReelSyncException):
    """Raised when fetching a query result fails.

    retriable is True for network errors and 5xx responses; the cache
    retries those a bounded number of times before giving up.
    """

    def __init__(
        self,
        path: str,
        reason: str,
        status_code: int | None = None,
        retriable: bool = False,
    ) -> None:
        self.status_code = status_code
        self.retriable = retriable
        super().__init__(
            f"Fetch of {path} failed: {reason}",
            "QUERY_FETCH_ERROR",
            {"path": path, "status_code": status_code},
        )


class MutationFailedException(ReelSyncException):
    """Raised (or carried in a MutationResult) when the server rejects a mutation."""

    def __init__(
        self,
        mutation: str,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(
            f"Mutation {mutation} failed: {reason}",
            "MUTATION_FAILED",
            {"mutation": mutation, "status_code": status_code},
        )


class TransportClosedException(ReelSyncException):
    """Raised inside the transport when the push connection drops or goes silent."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Transport closed: {reason}", "TRANSPORT_CLOSED", {"reason": reason})
