"""Optimistic mutations with exact rollback.

mutate() snapshots every cache entry an update touches, applies the
speculative values, then sends the request. On success the server response
wins: reconcile functions fold it in and the touched keys are invalidated
for an authoritative refetch. On failure every touched entry gets its
snapshot back (the same objects, not a refetch) and the error is returned
in the MutationResult. Mutations are never retried.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from functools import partial
from typing import Any

from reelsync.client.cache import QueryCache
from reelsync.client.http import MutationRequest
from reelsync.client.keys import CacheKey, KeyPredicate, MatcherLike, QueryParams
from reelsync.core.constants import KEY_PROJECTS
from reelsync.domain.enums import ProjectStatus
from reelsync.domain.exceptions import MutationFailedException, ValidationException

logger = logging.getLogger(__name__)

Updater = Callable[[Any], Any]
Reconcile = Callable[[Any, Any], Any]
Sender = Callable[[MutationRequest], Awaitable[Any]]


@dataclass(frozen=True)
class OptimisticUpdate:
    """Speculative change to every cached entry matching matcher.

    updater receives a deep copy of the cached value and returns the new one.
    reconcile(current, server_response), when given, folds the server's
    answer into the value after success.
    """

    matcher: MatcherLike
    updater: Updater
    reconcile: Reconcile | None = None


@dataclass(frozen=True)
class MutationResult:
    request: MutationRequest
    ok: bool
    response: Any = None
    error: MutationFailedException | None = None
    rolled_back: tuple[CacheKey, ...] = ()


class OptimisticMutator:
    """Applies OptimisticUpdates around a mutation request."""

    def __init__(self, cache: QueryCache, send: Sender) -> None:
        self.cache = cache
        self._send = send

    async def mutate(
        self,
        request: MutationRequest,
        updates: Iterable[OptimisticUpdate] = (),
    ) -> MutationResult:
        """Apply updates, send request, then confirm or roll back.

        Returns:
            MutationResult; ok=False carries the MutationFailedException.
        """
        updates = list(updates)
        touched: list[tuple[CacheKey, OptimisticUpdate]] = [
            (key, update)
            for update in updates
            for key in self.cache.find(update.matcher)
            if self.cache.peek(key) is not None
        ]
        snapshots = self.cache.snapshot({key for key, _ in touched})
        for key, update in touched:
            self.cache.update(key, lambda old, fn=update.updater: fn(copy.deepcopy(old)))
        versions = {key: self.cache.write_version(key) for key in snapshots}

        try:
            response = await self._send(request)
        except asyncio.CancelledError:
            self.cache.restore(snapshots, if_version=versions)
            raise
        except Exception as e:
            error = (
                e
                if isinstance(e, MutationFailedException)
                else MutationFailedException(request.name, str(e) or type(e).__name__)
            )
            restored = self.cache.restore(snapshots, if_version=versions)
            logger.warning("%s; rolled back %s cache entries", error.message, len(restored))
            return MutationResult(
                request=request, ok=False, error=error, rolled_back=tuple(restored)
            )

        for key, update in touched:
            if update.reconcile is None or self.cache.write_version(key) != versions.get(key):
                continue
            self.cache.update(key, lambda current, fn=update.reconcile: fn(current, response))
        for update in updates:
            self.cache.invalidate(update.matcher)
        return MutationResult(request=request, ok=True, response=response)

    async def update_project_status(
        self, project_id: str, status: ProjectStatus | str
    ) -> MutationResult:
        """Move a project to another pipeline column (kanban drag-and-drop).

        Raises:
            ValidationException: If status is not a pipeline status.
        """
        try:
            status = ProjectStatus(status)
        except ValueError:
            raise ValidationException(f"Unknown project status {status!r}", "status") from None
        request = MutationRequest(
            name="updateProjectStatus",
            method="PATCH",
            path=f"{KEY_PROJECTS}/{project_id}",
            body={"status": status.value},
        )
        update = OptimisticUpdate(
            matcher=project_views(project_id),
            updater=partial(_patch_project, project_id, {"status": status.value}),
            reconcile=partial(_merge_server_project, project_id),
        )
        return await self.mutate(request, [update])


def project_views(project_id: str) -> KeyPredicate:
    """Project lists (filtered or not) and the single-project view of project_id."""

    def matches(key: CacheKey) -> bool:
        if not key or key[0] != KEY_PROJECTS:
            return False
        rest = key[1:]
        if all(isinstance(segment, QueryParams) for segment in rest):
            return True
        return rest[0] == project_id and all(isinstance(s, QueryParams) for s in rest[1:])

    return KeyPredicate(matches)


def _patch_project(project_id: str, changes: dict[str, Any], value: Any) -> Any:
    if isinstance(value, list):
        return [
            {**item, **changes} if isinstance(item, dict) and item.get("id") == project_id else item
            for item in value
        ]
    if isinstance(value, dict) and value.get("id") == project_id:
        return {**value, **changes}
    return value


def _merge_server_project(project_id: str, current: Any, server_response: Any) -> Any:
    if not isinstance(server_response, dict) or server_response.get("id") != project_id:
        return current
    if isinstance(current, list):
        return [
            server_response if isinstance(item, dict) and item.get("id") == project_id else item
            for item in current
        ]
    if isinstance(current, dict) and current.get("id") == project_id:
        return server_response
    return current
