"""Messaging: Redis pub/sub fan-out of change events between workers."""

from reelsync.infrastructure.messaging.redis_pubsub import (
    ChangePublisher,
    decode_change_message,
    run_change_broadcast,
)

__all__ = [
    "ChangePublisher",
    "decode_change_message",
    "run_change_broadcast",
]
