"""Core: config, constants, lifespan and exception handlers."""

from reelsync.core.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
