"""SyncContext: the one place the client sync components are built and wired.

Construct it once per process and pass it to whatever needs the cache.
It stays dormant (no connection, no background tasks) until activate() is
called with an authenticated session, and goes dormant again on
deactivate().
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from reelsync.client.cache import Clock, FreshnessPolicy, QueryCache, QueryResult
from reelsync.client.http import MutationApi, MutationRequest, QueryApi, create_http_client
from reelsync.client.keys import CacheKey, key_path
from reelsync.client.mutations import MutationResult, OptimisticMutator, OptimisticUpdate
from reelsync.client.reconcile import Reconciler
from reelsync.client.router import InvalidationRouter
from reelsync.client.transport import Connector, TransportChannel
from reelsync.core.config import Settings, get_settings
from reelsync.domain.enums import ConnectionStatus
from reelsync.domain.exceptions import (
    AuthenticationException,
    MutationFailedException,
    QueryFetchException,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    """Authenticated session handed over by the auth layer."""

    user_id: str
    token: str


class SyncContext:
    """Owns the cache, router, reconciler, mutator and transport.

    Args:
        settings: Defaults to get_settings().
        http_client: Pre-built AsyncClient (tests use an ASGI transport).
            When omitted one is created per session with the bearer token.
        connector: Transport connector override (tests use fakes).
        clock: Monotonic clock for the cache.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._owns_http_client = False
        self._connector = connector
        self._query_api: QueryApi | None = None
        self._mutation_api: MutationApi | None = None
        self.session: AuthSession | None = None
        self.transport: TransportChannel | None = None

        self.cache = QueryCache(
            self._fetch,
            default_policy=FreshnessPolicy.from_settings(self.settings),
            clock=clock,
            tick=self.settings.cache_revalidate_tick_seconds,
        )
        self.router = InvalidationRouter(self.cache)
        self.reconciler = Reconciler(self.cache)
        self.mutator = OptimisticMutator(self.cache, self._send)

    @property
    def active(self) -> bool:
        return self.session is not None

    @property
    def status(self) -> ConnectionStatus:
        if self.transport is None:
            return ConnectionStatus.DISCONNECTED
        return self.transport.status

    async def activate(self, session: AuthSession) -> None:
        """Start syncing for session; switching users resets everything first.

        Raises:
            AuthenticationException: If session has no token.
        """
        if not session.token:
            raise AuthenticationException("Cannot activate sync without a session token")
        if self.session == session:
            return
        if self.session is not None:
            await self.deactivate()

        self.session = session
        client = self._http_client
        if client is None:
            client = create_http_client(
                self.settings.api_base_url, session.token, self.settings.http_timeout_seconds
            )
            self._http_client = client
            self._owns_http_client = True
        self._query_api = QueryApi(client)
        self._mutation_api = MutationApi(client)

        self.transport = TransportChannel(
            self.settings.sync_url,
            session.token,
            connector=self._connector,
            settings=self.settings,
        )
        self.transport.on_event(self.router.route_message)
        self.transport.on_status(self.reconciler.on_status)
        self.router.start()
        self.cache.start()
        self.transport.start()
        logger.info("Sync activated for user %s", session.user_id)

    async def deactivate(self) -> None:
        """Disconnect, stop background work and drop cached data."""
        if self.session is None:
            return
        if self.transport is not None:
            await self.transport.stop()
            self.transport = None
        await self.router.stop()
        await self.cache.close()
        self.cache.clear()
        self.reconciler.reset()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False
        self._query_api = None
        self._mutation_api = None
        logger.info("Sync deactivated for user %s", self.session.user_id)
        self.session = None

    def focus(self) -> list[CacheKey]:
        """Window regained focus: refetch stale subscribed entries."""
        if not self.active:
            return []
        return self.cache.refetch_stale()

    def query(self, key: CacheKey) -> QueryResult | None:
        return self.cache.read(key)

    async def mutate(
        self, request: MutationRequest, updates: list[OptimisticUpdate] | tuple = ()
    ) -> MutationResult:
        return await self.mutator.mutate(request, updates)

    async def _fetch(self, key: CacheKey) -> Any:
        if self._query_api is None:
            raise QueryFetchException(key_path(key), "sync is not active")
        return await self._query_api.fetch(key)

    async def _send(self, request: MutationRequest) -> Any:
        if self._mutation_api is None:
            raise MutationFailedException(request.name, "sync is not active")
        return await self._mutation_api.send(request)
