"""Tests for the reconnecting push channel (connector, heartbeat, backoff)."""

import asyncio
import random
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from reelsync.client.transport import TransportChannel
from reelsync.core.config import Settings
from reelsync.domain.enums import ConnectionStatus

URL = "ws://test/socket.io"


@pytest.fixture
async def channels() -> AsyncIterator[list[TransportChannel]]:
    """Collects channels built by a test and stops them afterwards."""
    built: list[TransportChannel] = []
    yield built
    for channel in built:
        await channel.stop()


@pytest.fixture
def open_channel(channels: list[TransportChannel], fast_settings: Settings) -> Callable[..., TransportChannel]:
    def build(connector: Any, **kwargs: Any) -> TransportChannel:
        channel = TransportChannel(URL, "tok-123", connector=connector, settings=fast_settings, **kwargs)
        channels.append(channel)
        return channel

    return build


def record_statuses(channel: TransportChannel) -> list[ConnectionStatus]:
    seen: list[ConnectionStatus] = []
    channel.on_status(seen.append)
    return seen


async def test_connects_with_token_and_reports_status(open_channel, connector, wait_until) -> None:
    channel = open_channel(connector)
    statuses = record_statuses(channel)
    assert channel.status is ConnectionStatus.DISCONNECTED

    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
    await wait_until(lambda: channel.session_id == "sid-1")

    assert connector.urls == [f"{URL}?token=tok-123"]
    assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert channel.transport_name == "websocket"
    assert channel.last_connected_at is not None
    assert channel.attempts == 0


async def test_change_frames_are_dispatched_in_order(open_channel, connector, wait_until) -> None:
    channel = open_channel(connector)
    received: list[tuple[str, Any]] = []
    channel.on_event(lambda name, data: received.append((name, data)))
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)

    connection = connector.current
    connection.push("comment:created", {"id": "c1", "projectId": "p1"})
    connection.push_raw("not json")
    connection.push_frame({"data": {"id": "x"}})
    connection.push("note:updated", {"id": "n1"})
    connection.push("project:deleted", {"id": "p1"})
    await wait_until(lambda: len(received) == 3)

    assert [name for name, _ in received] == ["comment:created", "note:updated", "project:deleted"]
    assert received[0][1] == {"id": "c1", "projectId": "p1"}


async def test_failing_listener_does_not_block_others(open_channel, connector, wait_until) -> None:
    channel = open_channel(connector)
    received: list[str] = []

    def broken(name: str, data: Any) -> None:
        raise RuntimeError("listener bug")

    channel.on_event(broken)
    channel.on_event(lambda name, data: received.append(name))
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
    connector.current.push("note:created", {"id": "n1"})

    await wait_until(lambda: received == ["note:created"])
    assert channel.status is ConnectionStatus.CONNECTED


async def test_removed_listener_stops_receiving(open_channel, connector, wait_until) -> None:
    channel = open_channel(connector)
    first: list[str] = []
    second: list[str] = []
    remove = channel.on_event(lambda name, data: first.append(name))
    channel.on_event(lambda name, data: second.append(name))
    remove()
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
    connector.current.push("note:created", {"id": "n1"})

    await wait_until(lambda: second == ["note:created"])
    assert first == []


async def test_heartbeat_keeps_answered_connection_open(open_channel, connector) -> None:
    channel = open_channel(connector)
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)

    await asyncio.sleep(0.2)

    assert len(connector.connections) == 1
    assert channel.status is ConnectionStatus.CONNECTED
    pings = [frame for frame in connector.current.sent if frame["event"] == "ping"]
    assert len(pings) >= 2


async def test_missing_pong_forces_reconnect(open_channel, make_connector, wait_until) -> None:
    connector = make_connector(auto_pong=False)
    channel = open_channel(connector)
    statuses = record_statuses(channel)
    channel.start()

    await wait_until(lambda: len(connector.connections) >= 2)

    assert connector.connections[0].closed
    assert any(frame["event"] == "ping" for frame in connector.connections[0].sent)
    assert ConnectionStatus.DISCONNECTED in statuses
    assert ConnectionStatus.RECONNECTING in statuses


async def test_reconnects_after_server_drop(open_channel, connector, wait_until) -> None:
    channel = open_channel(connector)
    statuses = record_statuses(channel)
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)

    connector.current.drop()
    await wait_until(lambda: len(connector.connections) == 2 and channel.status is ConnectionStatus.CONNECTED)

    assert statuses == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.CONNECTED,
    ]
    assert channel.attempts == 0


async def test_retries_failed_connects_until_success(open_channel, connector) -> None:
    connector.failures = 3
    channel = open_channel(connector)
    statuses = record_statuses(channel)
    channel.start()

    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)

    assert len(connector.urls) == 4
    assert len(connector.connections) == 1
    assert statuses == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.CONNECTED,
    ]
    assert channel.attempts == 0


async def test_keeps_retrying_while_server_refuses(open_channel, connector, wait_until) -> None:
    connector.refuse = True
    channel = open_channel(connector)
    channel.start()

    await wait_until(lambda: len(connector.urls) >= 4)
    assert channel.status is ConnectionStatus.RECONNECTING
    assert channel.attempts >= 3

    connector.refuse = False
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)


async def test_stop_closes_connection_and_stops_reconnecting(open_channel, connector) -> None:
    channel = open_channel(connector)
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
    connection = connector.current

    await channel.stop()
    await asyncio.sleep(0.1)

    assert connection.closed
    assert not channel.running
    assert channel.status is ConnectionStatus.DISCONNECTED
    assert len(connector.urls) == 1


@pytest.mark.parametrize("yields", [0, 1, 3])
async def test_stop_right_after_start_returns(open_channel, connector, yields) -> None:
    channel = open_channel(connector)
    channel.start()
    for _ in range(yields):
        await asyncio.sleep(0)

    await asyncio.wait_for(channel.stop(), timeout=2.0)

    assert not channel.running
    assert channel.status is ConnectionStatus.DISCONNECTED
    assert all(connection.closed for connection in connector.connections)


async def test_stop_while_connect_is_completing_returns(open_channel, connector) -> None:
    released = asyncio.Event()

    async def slow_connector(url: str) -> Any:
        await released.wait()
        return await connector(url)

    channel = open_channel(slow_connector)
    channel.start()
    await asyncio.sleep(0.01)

    released.set()
    await asyncio.wait_for(channel.stop(), timeout=2.0)
    await asyncio.sleep(0.05)

    assert not channel.running
    assert channel.status is ConnectionStatus.DISCONNECTED
    assert all(connection.closed for connection in connector.connections)


async def test_stop_leaves_no_reader_or_heartbeat_tasks(open_channel, connector) -> None:
    channel = open_channel(connector)
    channel.start()
    await channel.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)

    await channel.stop()
    await asyncio.sleep(0)

    leftovers = [
        task
        for task in asyncio.all_tasks()
        if task.get_coro().__qualname__ in ("TransportChannel._read", "TransportChannel._heartbeat")
    ]
    assert leftovers == []


def test_backoff_doubles_up_to_the_cap() -> None:
    settings = Settings(reconnect_delay_seconds=1.0, reconnect_delay_max_seconds=5.0)
    channel = TransportChannel(URL, "t", settings=settings, rng=lambda: 0.0)

    assert [channel.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_jitter_stays_within_bounds() -> None:
    settings = Settings(
        reconnect_delay_seconds=1.0,
        reconnect_delay_max_seconds=5.0,
        reconnect_randomization=0.5,
    )
    channel = TransportChannel(URL, "t", settings=settings, rng=random.Random(7).random)

    delays = [channel.backoff_delay(n) for n in range(1, 10) for _ in range(20)]
    assert all(0.5 <= delay <= 5.0 for delay in delays)
    assert len(set(delays)) > 1
