"""
UTC datetime utilities for consistent timezone handling.

Wall-clock timestamps (last_connected_at, fetched_at for display) are
timezone-aware UTC. Freshness arithmetic uses a monotonic clock instead.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return the current UTC datetime with timezone info.

    Use this instead of datetime.now() (naive, local timezone) or
    datetime.utcnow() (naive, deprecated in Python 3.12).

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(UTC)
