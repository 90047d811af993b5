"""Pytest configuration and fixtures for reelsync.

Server tests use reelsync.main:app (HTTP via httpx ASGITransport, sockets via
FastAPI TestClient). Client tests use in-memory fakes for the fetcher, the
socket connection and the clock, so nothing here needs Redis or a network.
"""

import asyncio
import copy
import json
import os
from collections.abc import AsyncIterator, Callable
from typing import Any

# Env must be set before the app module is imported (it builds the app at import).
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-reelsync-tests")
os.environ["REDIS_ENABLED"] = "false"
os.environ["TELEMETRY_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from websockets.exceptions import ConnectionClosedError

from reelsync.client.cache import FreshnessPolicy, QueryCache
from reelsync.client.keys import CacheKey, key_path
from reelsync.core.config import Settings, get_settings

get_settings.cache_clear()

from reelsync.core.lifespan import create_lifespan  # noqa: E402
from reelsync.infrastructure.security.jwt import create_access_token  # noqa: E402
from reelsync.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """Async HTTP client against the FastAPI app, with lifespan state set up."""
    async with create_lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.fixture
def token() -> str:
    return create_access_token({"sub": "user-1", "role": "Admin"})


@pytest.fixture
def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---- Client-side fakes ----


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """Query API stand-in keyed by GET path.

    responses: path -> value (or a zero-arg callable producing it).
    errors: path -> list of exceptions raised by the next calls, in order.
    gate: when set to an Event, every fetch waits for it.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: asyncio.Event | None = None

    def count(self, path: str) -> int:
        return self.calls.count(path)

    async def __call__(self, key: CacheKey) -> Any:
        path = key_path(key)
        self.calls.append(path)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            pending = self.errors.get(path)
            if pending:
                raise pending.pop(0)
            value = self.responses.get(path)
            return copy.deepcopy(value() if callable(value) else value)
        finally:
            self.in_flight -= 1


async def instant_sleep(_: float) -> None:
    await asyncio.sleep(0)


class FakeConnection:
    """In-memory socket: frames pushed by the test are read by the transport."""

    def __init__(self, auto_pong: bool = True, sid: str = "sid-1") -> None:
        self.auto_pong = auto_pong
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.push("connected", {"sid": sid, "transport": "websocket"})

    def push(self, event: str, data: Any = None) -> None:
        self._incoming.put_nowait(json.dumps({"event": event, "data": data if data is not None else {}}))

    def push_frame(self, frame: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    def push_raw(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def drop(self) -> None:
        """Server side closes the connection."""
        self.closed = True
        self._incoming.put_nowait(None)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        frame = json.loads(message)
        self.sent.append(frame)
        if frame.get("event") == "ping" and self.auto_pong:
            self.push("pong")

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Transport connector returning FakeConnections; can refuse connections."""

    def __init__(self, factory: Callable[[], FakeConnection] = FakeConnection) -> None:
        self.factory = factory
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.failures = 0
        self.refuse = False

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.refuse or self.failures:
            if self.failures:
                self.failures -= 1
            raise OSError("connection refused")
        connection = self.factory()
        self.connections.append(connection)
        return connection

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]


class InMemoryHub(FakeConnector):
    """Server stand-in: a connector whose connections receive broadcasts.

    Duck-types ConnectionManager.broadcast so a ChangeEmitter can publish to it.
    """

    async def broadcast(self, message: dict[str, Any]) -> int:
        live = [c for c in self.connections if not c.closed]
        for connection in live:
            connection.push_frame(message)
        return len(live)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def policy() -> FreshnessPolicy:
    return FreshnessPolicy(
        max_age=300.0,
        refetch_interval=30.0,
        refetch_on_focus=True,
        gc_time=600.0,
        retry_attempts=3,
        retry_max_delay=4.0,
    )


@pytest.fixture
async def cache(fetcher: FakeFetcher, clock: FakeClock, policy: FreshnessPolicy) -> AsyncIterator[QueryCache]:
    query_cache = QueryCache(
        fetcher, default_policy=policy, clock=clock, sleep=instant_sleep, tick=1.0
    )
    yield query_cache
    await query_cache.close()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with millisecond-scale reconnect and heartbeat bounds."""
    return Settings(
        reconnect_delay_seconds=0.01,
        reconnect_delay_max_seconds=0.05,
        reconnect_randomization=0.5,
        heartbeat_interval_seconds=0.02,
        heartbeat_timeout_seconds=0.05,
        connect_timeout_seconds=1.0,
        cache_revalidate_tick_seconds=0.05,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def hub() -> InMemoryHub:
    return InMemoryHub()


@pytest.fixture
def make_connector() -> Callable[..., FakeConnector]:
    """Build a FakeConnector whose connections take the given FakeConnection kwargs."""

    def build(**connection_kwargs: Any) -> FakeConnector:
        return FakeConnector(lambda: FakeConnection(**connection_kwargs))

    return build


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return eventually
