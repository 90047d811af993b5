"""Application layer: the post-commit change emitter."""

from reelsync.application.emitter import ChangeEmitter

__all__ = ["ChangeEmitter"]
