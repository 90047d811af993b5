"""Invalidation router: turns change events into cache invalidations.

INVALIDATION_RULES maps every ChangeKind to the key matchers it
invalidates. Project-level changes invalidate every project query (lists,
filtered lists, single project views) plus metrics; changes to a project's
child resources only touch that project's sub-collection.

Events are processed one at a time, in arrival order, by a single worker
draining an asyncio.Queue. A malformed event is logged and dropped; it
never stops the worker.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from reelsync.client.cache import QueryCache
from reelsync.client.keys import AnyOf, KeyMatcher, KeyPrefix
from reelsync.core.constants import (
    KEY_METRICS,
    KEY_NOTES,
    KEY_PROJECTS,
    SUBKEY_COMMENTS,
    SUBKEY_LOGS,
    SUBKEY_MUSIC,
    SUBKEY_VOICES,
)
from reelsync.domain.events import ChangeEvent, ChangeKind
from reelsync.domain.exceptions import MalformedChangeEventException

logger = logging.getLogger(__name__)

MatcherFactory = Callable[[ChangeEvent], KeyMatcher]


def _key_class(segment: str) -> MatcherFactory:
    matcher = KeyPrefix((segment,))
    return lambda event: matcher


def _project_child(subkey: str) -> MatcherFactory:
    return lambda event: KeyPrefix((KEY_PROJECTS, event.project_id, subkey))


_PROJECT_WIDE = (_key_class(KEY_PROJECTS), _key_class(KEY_METRICS))
_COMMENTS = (_project_child(SUBKEY_COMMENTS),)
_MUSIC = (_project_child(SUBKEY_MUSIC),)
_VOICES = (_project_child(SUBKEY_VOICES),)
_NOTES = (_key_class(KEY_NOTES),)

INVALIDATION_RULES: Mapping[ChangeKind, tuple[MatcherFactory, ...]] = {
    ChangeKind.PROJECT_CREATED: _PROJECT_WIDE,
    ChangeKind.PROJECT_UPDATED: _PROJECT_WIDE,
    ChangeKind.PROJECT_DELETED: _PROJECT_WIDE,
    ChangeKind.NPS_RESPONSE_CREATED: _PROJECT_WIDE,
    ChangeKind.COMMENT_CREATED: _COMMENTS,
    ChangeKind.COMMENT_UPDATED: _COMMENTS,
    ChangeKind.COMMENT_DELETED: _COMMENTS,
    ChangeKind.STATUS_LOG_CREATED: (_project_child(SUBKEY_LOGS),),
    ChangeKind.PROJECT_MUSIC_CREATED: _MUSIC,
    ChangeKind.PROJECT_MUSIC_UPDATED: _MUSIC,
    ChangeKind.PROJECT_MUSIC_DELETED: _MUSIC,
    ChangeKind.PROJECT_VOICE_CREATED: _VOICES,
    ChangeKind.PROJECT_VOICE_UPDATED: _VOICES,
    ChangeKind.PROJECT_VOICE_DELETED: _VOICES,
    ChangeKind.NOTE_CREATED: _NOTES,
    ChangeKind.NOTE_UPDATED: _NOTES,
    ChangeKind.NOTE_DELETED: _NOTES,
}

_unrouted = set(ChangeKind) - set(INVALIDATION_RULES)
if _unrouted:
    raise RuntimeError(f"No invalidation rule for: {sorted(k.value for k in _unrouted)}")


def matcher_for(event: ChangeEvent) -> KeyMatcher:
    """Union of every matcher the event's kind invalidates."""
    return AnyOf(tuple(factory(event) for factory in INVALIDATION_RULES[event.kind]))


class InvalidationRouter:
    """Routes change events into QueryCache.invalidate, strictly in order."""

    def __init__(self, cache: QueryCache) -> None:
        self.cache = cache
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self.processed = 0
        self.dropped = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="reelsync-invalidation-router"
            )

    async def stop(self) -> None:
        """Stop the worker; events still queued are discarded."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    def route(self, event: ChangeEvent) -> None:
        """Queue an event for invalidation. Never blocks."""
        self._queue.put_nowait(event)

    def route_message(self, name: str, data: Any) -> None:
        """Parse a wire frame and queue it; malformed frames are logged and dropped."""
        try:
            event = ChangeEvent.from_wire(name, data)
        except MalformedChangeEventException as e:
            self.dropped += 1
            logger.warning("Dropping change event: %s", e.message)
            return
        self.route(event)

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    def apply(self, event: ChangeEvent) -> list:
        """Invalidate the keys affected by event right away; returns matched keys."""
        matched = self.cache.invalidate(matcher_for(event))
        logger.debug("%s invalidated %s key(s)", event.name, len(matched))
        return matched

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.apply(event)
                self.processed += 1
            except MalformedChangeEventException as e:
                self.dropped += 1
                logger.warning("Dropping change event: %s", e.message)
            except Exception:
                self.dropped += 1
                logger.exception("Failed to route %s", event.name)
            finally:
                self._queue.task_done()
