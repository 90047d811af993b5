"""Client end of the push channel.

One long-lived WebSocket to /socket.io per client. The channel reconnects
forever with bounded, randomized exponential backoff and sends an
application-level "ping" every heartbeat interval; a missing "pong" within
the heartbeat timeout closes the connection so the reconnect loop kicks in
sooner than the socket's own timeout would.

Change frames are handed to event listeners in arrival order. Status
transitions are reported to status listeners.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import urlencode

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from reelsync.core.config import Settings, get_settings
from reelsync.core.constants import EVENT_CONNECTED, EVENT_PING, EVENT_PONG, TRANSPORT_WEBSOCKET
from reelsync.domain.enums import ConnectionStatus
from reelsync.domain.exceptions import TransportClosedException
from reelsync.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)

EventListener = Callable[[str, Any], None]
StatusListener = Callable[[ConnectionStatus], None]


class SocketConnection(Protocol):
    """What the channel needs from a connection (websockets' ClientConnection fits)."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[[str], Awaitable[SocketConnection]]


async def websocket_connector(url: str) -> SocketConnection:
    """Open a WebSocket; the protocol-level keepalive is off, the channel runs its own."""
    return await connect(url, ping_interval=None, open_timeout=None)


class TransportChannel:
    """Reconnecting push connection with heartbeat and status reporting.

    Args:
        url: ws:// or wss:// URL of the socket endpoint.
        token: Session JWT, sent as the token query parameter.
        connector: Coroutine function url -> connection; defaults to websockets.
        settings: Reconnect and heartbeat bounds.
        rng: Random source in [0, 1) for backoff jitter.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        connector: Connector | None = None,
        settings: Settings | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.url = url
        self._token = token
        self._connector = connector or websocket_connector
        self.settings = settings or get_settings()
        self._rng = rng
        self.status = ConnectionStatus.DISCONNECTED
        self.attempts = 0
        self.transport_name = TRANSPORT_WEBSOCKET
        self.last_connected_at: datetime | None = None
        self.session_id: str | None = None
        self._event_listeners: list[EventListener] = []
        self._status_listeners: list[StatusListener] = []
        self._task: asyncio.Task | None = None
        self._connection: SocketConnection | None = None
        self._pong: asyncio.Event | None = None
        self._has_connected = False
        self._stopping = False

    # ---- Listeners ----

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        """Register listener(name, data) for pushed frames; returns a remover."""
        self._event_listeners.append(listener)
        return lambda: self._remove(self._event_listeners, listener)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register listener(status) for status changes; returns a remover."""
        self._status_listeners.append(listener)
        return lambda: self._remove(self._status_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ---- Lifecycle ----

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="reelsync-transport"
        )

    async def stop(self) -> None:
        """Drop the connection and stop reconnecting."""
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_connection()
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def wait_for_status(self, status: ConnectionStatus, timeout: float | None = None) -> None:
        """Return once the channel reaches status.

        Raises:
            asyncio.TimeoutError: If timeout elapses first.
        """
        if self.status is status:
            return
        future = asyncio.get_running_loop().create_future()

        def listener(new_status: ConnectionStatus) -> None:
            if new_status is status and not future.done():
                future.set_result(None)

        remove = self.on_status(listener)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            remove()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number attempt (1-based)."""
        base = self.settings.reconnect_delay_seconds
        cap = self.settings.reconnect_delay_max_seconds
        delay = base * 2 ** max(attempt - 1, 0)
        jitter = self.settings.reconnect_randomization
        if jitter:
            deviation = self._rng() * jitter * delay
            delay = delay + deviation if self._rng() >= 0.5 else delay - deviation
        return min(max(delay, 0.0), cap)

    # ---- Internals ----

    def _authenticated_url(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'token': self._token})}"

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self.status:
            return
        self.status = status
        logger.info("Transport %s (attempts=%s)", status.value, self.attempts)
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")

    def _dispatch(self, name: str, data: Any) -> None:
        for listener in list(self._event_listeners):
            try:
                listener(name, data)
            except Exception:
                logger.exception("Event listener failed for %s", name)

    async def _run(self) -> None:
        while not self._stopping:
            self._set_status(
                ConnectionStatus.RECONNECTING if self.attempts else ConnectionStatus.CONNECTING
            )
            try:
                async with asyncio.timeout(self.settings.connect_timeout_seconds):
                    connection = await self._connector(self._authenticated_url())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Transport connect failed: %s", e or type(e).__name__)
                await self._backoff()
                continue

            self._connection = connection
            if self._stopping:
                await self._close_connection()
                return
            self._pong = asyncio.Event()
            self.attempts = 0
            self.last_connected_at = utc_now()
            self._has_connected = True
            self._set_status(ConnectionStatus.CONNECTED)
            try:
                await self._serve(connection)
            except TransportClosedException as e:
                logger.info("%s", e.message)
            finally:
                await self._close_connection()
            if self._stopping:
                return
            self._set_status(ConnectionStatus.DISCONNECTED)
            await self._backoff()

    async def _backoff(self) -> None:
        self.attempts += 1
        delay = self.backoff_delay(self.attempts)
        logger.debug("Reconnecting in %.2fs (attempt %s)", delay, self.attempts)
        if self._has_connected or self.attempts > 1:
            self._set_status(ConnectionStatus.RECONNECTING)
        await asyncio.sleep(delay)

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception:
            logger.debug("Error closing transport connection", exc_info=True)

    async def _serve(self, connection: SocketConnection) -> None:
        reader = asyncio.create_task(self._read(connection))
        heartbeat = asyncio.create_task(self._heartbeat(connection))
        try:
            done, _ = await asyncio.wait(
                {reader, heartbeat}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (reader, heartbeat):
                if not task.done():
                    task.cancel()
            # Retrieve every outcome so none is reported as never retrieved.
            await asyncio.gather(reader, heartbeat, return_exceptions=True)
        for task in done:
            task.result()

    async def _read(self, connection: SocketConnection) -> None:
        try:
            async for raw in connection:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            raise TransportClosedException(str(e) or "connection closed") from None
        raise TransportClosedException("server closed the connection")

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            logger.debug("Ignoring frame without event name")
            return
        name, data = frame["event"], frame.get("data")
        if name == EVENT_PONG:
            if self._pong is not None:
                self._pong.set()
        elif name == EVENT_CONNECTED:
            data = data if isinstance(data, dict) else {}
            self.session_id = data.get("sid")
            self.transport_name = data.get("transport", self.transport_name)
        else:
            self._dispatch(name, data)

    async def _heartbeat(self, connection: SocketConnection) -> None:
        interval = self.settings.heartbeat_interval_seconds
        timeout = self.settings.heartbeat_timeout_seconds
        while True:
            await asyncio.sleep(interval)
            pong = self._pong
            if pong is None:
                return
            pong.clear()
            try:
                await connection.send(json.dumps({"event": EVENT_PING, "data": {}}))
            except ConnectionClosed as e:
                raise TransportClosedException(str(e) or "connection closed") from None
            try:
                async with asyncio.timeout(timeout):
                    await pong.wait()
            except TimeoutError:
                raise TransportClosedException("heartbeat timeout") from None
