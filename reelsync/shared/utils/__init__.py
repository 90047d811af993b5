"""Shared utilities: datetime."""

from reelsync.shared.utils.datetime import utc_now

__all__ = ["utc_now"]
