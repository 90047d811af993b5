"""Redis Pub/Sub fan-out for change events.

With several server workers, a mutation handled by one worker must reach
sockets held by every other worker. The emitter publishes each change
frame on one Redis channel; every worker runs run_change_broadcast, which
relays frames from that channel to its local ConnectionManager.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as redis

from reelsync.core.config import get_settings
from reelsync.domain.events import ChangeEvent
from reelsync.domain.exceptions import MalformedChangeEventException

logger = logging.getLogger(__name__)


class _RedisPubSubBase:
    """Shared Redis connection and channel logic for change fan-out."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        """Initialize. Pass redis_client for DI/testing."""
        self.redis = redis_client
        self.settings = get_settings()
        self.channel = self.settings.change_channel
        self._connected = redis_client is not None

    async def connect(self) -> None:
        """Establish Redis connection. Call on app startup."""
        if self._connected:
            return
        if self.redis is None:
            try:
                self.redis = redis.Redis(
                    host=self.settings.redis_host,
                    port=self.settings.redis_port,
                    db=self.settings.redis_db,
                    password=self.settings.redis_password.get_secret_value() if self.settings.redis_password else None,
                    decode_responses=True,
                    socket_connect_timeout=5,
                )
                await self.redis.ping()
                self._connected = True
                logger.info("Redis pub/sub connected")
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning("Redis pub/sub connection failed: %s", e)
                self._connected = False
                self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection. Call on app shutdown."""
        if self.redis:
            await self.redis.aclose()
            self._connected = False
            logger.info("Redis pub/sub disconnected")

    def is_available(self) -> bool:
        """Return True if Redis is connected."""
        return self._connected and self.redis is not None


class ChangePublisher(_RedisPubSubBase):
    """Publishes change frames to the shared Redis channel."""

    async def publish(self, event: ChangeEvent) -> bool:
        """Publish a change event.

        Returns:
            True if published, False if Redis is unavailable or the publish failed
            (the caller then broadcasts in-process).
        """
        if not self.is_available() or self.redis is None:
            logger.debug("Redis not available, skipping publish")
            return False
        try:
            await self.redis.publish(self.channel, json.dumps(event.to_wire()))
            logger.debug("Published %s to %s", event.name, self.channel)
        except Exception:
            logger.exception("Failed to publish change event")
            return False
        else:
            return True


def decode_change_message(message: dict[str, Any]) -> ChangeEvent | None:
    """Turn a Redis pub/sub message into a ChangeEvent; None for control or bad messages."""
    if message.get("type") != "message":
        return None
    try:
        return ChangeEvent.from_frame(json.loads(message["data"]))
    except (json.JSONDecodeError, KeyError, TypeError):
        logger.exception("Failed to parse change message")
    except MalformedChangeEventException as e:
        logger.warning("Dropping malformed change message: %s", e.message)
    return None


async def run_change_broadcast(app: Any, subscriber: ChangePublisher | None = None) -> None:
    """Relay frames from the Redis change channel to this worker's sockets.

    Call as a background task from lifespan when Redis is enabled. Cancelling
    the task stops the loop.
    """
    subscriber = subscriber or ChangePublisher()
    await subscriber.connect()
    if not subscriber.is_available() or subscriber.redis is None:
        logger.warning("Redis not available, change broadcast not started")
        return
    pubsub = subscriber.redis.pubsub()
    try:
        await pubsub.subscribe(subscriber.channel)
        logger.info("Subscribed to %s for WebSocket broadcast", subscriber.channel)
        async for message in pubsub.listen():
            event = decode_change_message(message)
            if event is None:
                continue
            manager = getattr(app.state, "ws_manager", None)
            if manager is not None:
                await manager.broadcast(event.to_wire())
    except asyncio.CancelledError:
        logger.info("Change broadcast task cancelled")
    except Exception:
        logger.exception("Change broadcast error")
    finally:
        await pubsub.unsubscribe()
        await pubsub.aclose()
