"""Change emitter: publishes a change event after a mutation commits.

The external CRUD layer calls publish() (or decorates its handlers with
emits()) once the write is durable. Delivery is fire-and-forget: if nobody
is connected the event is dropped, and clients recover through background
revalidation and reconnect reconciliation.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from functools import wraps
from typing import Any, TypeVar

from reelsync.api.websocket.manager import ConnectionManager
from reelsync.domain.events import ChangeEvent, ChangeKind
from reelsync.domain.exceptions import MalformedChangeEventException
from reelsync.infrastructure.messaging.redis_pubsub import ChangePublisher
from reelsync.shared.telemetry.tracing import add_span_attributes, set_span_error, traced

logger = logging.getLogger(__name__)

R = TypeVar("R")

PayloadBuilder = Callable[[Any], Mapping[str, Any]]


class ChangeEmitter:
    """Broadcasts change events to every connected session.

    With a connected ChangePublisher the frame goes through Redis so every
    worker relays it; otherwise it is broadcast in-process.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        publisher: ChangePublisher | None = None,
    ) -> None:
        self.manager = manager
        self.publisher = publisher

    @traced("reelsync.change.publish")
    async def publish(self, kind: ChangeKind | str, payload: Mapping[str, Any]) -> None:
        """Publish one committed change.

        Args:
            kind: Event kind (enum member or wire name such as 'project:updated').
            payload: At least {"id": ...}; child resources also carry projectId.

        An unknown kind or missing identifiers are logged and the event is
        dropped without raising.
        """
        try:
            event = ChangeEvent(
                kind=kind if isinstance(kind, ChangeKind) else ChangeKind.parse(kind),
                payload=dict(payload) if isinstance(payload, Mapping) else payload,
            )
        except MalformedChangeEventException as e:
            set_span_error(e)
            logger.warning("Dropping change event: %s", e.message)
            return
        add_span_attributes(event=event.name, resource_id=event.resource_id)
        await self.deliver(event)

    async def deliver(self, event: ChangeEvent) -> None:
        """Send an already-built event; delivery failures are logged, never raised."""
        try:
            if self.publisher is not None and await self.publisher.publish(event):
                return
            delivered = await self.manager.broadcast(event.to_wire())
            logger.info("Emitted %s to %s client(s)", event.name, delivered)
        except Exception as e:
            set_span_error(e)
            logger.exception("Failed to emit %s", event.name)

    def emits(
        self,
        kind: ChangeKind | str,
        payload_from_result: PayloadBuilder,
    ) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
        """Decorator: publish kind after the wrapped mutation returns.

        The wrapped coroutine is expected to commit before returning. If it
        raises, nothing is published and the exception propagates. Once it
        has returned, its result is returned even if no event could be built.

        Example:
            @emitter.emits(ChangeKind.PROJECT_UPDATED, lambda p: {"id": p["id"], "project": p})
            async def update_project(project_id, changes): ...
        """

        def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
            @wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> R:
                result = await func(*args, **kwargs)
                try:
                    payload = payload_from_result(result)
                except Exception:
                    logger.exception("Could not build %s payload from %s", kind, func.__name__)
                    return result
                await self.publish(kind, payload)
                return result

            return wrapper

        return decorator
