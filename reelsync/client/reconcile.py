"""Reconnect reconciliation.

Change events are not replayed after a gap, so a client that was
disconnected must assume it missed everything. On disconnect the reconciler
records which cache keys were fresh and when the drop happened. Once the
channel is back it marks those keys stale, along with any key fetched
during the gap, and refetches every subscribed stale or errored entry.
"""

from __future__ import annotations

import logging

from reelsync.client.cache import QueryCache
from reelsync.client.keys import CacheKey
from reelsync.domain.enums import ConnectionStatus, EntryState, ReconcileState

logger = logging.getLogger(__name__)


class Reconciler:
    """Drives Idle -> Pending -> Running -> Idle from transport status changes.

    Wire it with transport.on_status(reconciler.on_status).
    """

    def __init__(self, cache: QueryCache) -> None:
        self.cache = cache
        self.state = ReconcileState.IDLE
        self.runs = 0
        self._fresh_at_disconnect: set[CacheKey] = set()
        self._disconnected_at: float | None = None
        self._connected_before = False

    def on_status(self, status: ConnectionStatus) -> None:
        if status is ConnectionStatus.DISCONNECTED:
            self._on_disconnected()
        elif status is ConnectionStatus.CONNECTED:
            if self._connected_before and self.state is ReconcileState.PENDING:
                self.reconcile()
            self._connected_before = True

    def _on_disconnected(self) -> None:
        if not self._connected_before or self.state is ReconcileState.PENDING:
            return
        self._fresh_at_disconnect = set(self.cache.fresh_keys())
        self._disconnected_at = self.cache.now()
        self.state = ReconcileState.PENDING
        logger.info(
            "Push channel lost; %s fresh key(s) will be revalidated on reconnect",
            len(self._fresh_at_disconnect),
        )

    def reconcile(self) -> list[CacheKey]:
        """Mark keys fresh at disconnect or fetched since then stale; refetch subscribed ones.

        Returns:
            Keys being refetched.
        """
        self.state = ReconcileState.RUNNING
        recorded, self._fresh_at_disconnect = self._fresh_at_disconnect, set()
        if self._disconnected_at is not None:
            recorded.update(self.cache.fetched_since(self._disconnected_at))
            self._disconnected_at = None
        try:
            self.cache.invalidate(lambda key: key in recorded)
            self.cache.refetch_active()
            refetched = [k for k in self.cache.keys() if self.cache.state(k) is EntryState.FETCHING]
        finally:
            self.state = ReconcileState.IDLE
        self.runs += 1
        logger.info(
            "Reconciled after reconnect: %s stale, %s refetching",
            len(recorded),
            len(refetched),
        )
        return refetched

    def reset(self) -> None:
        """Forget connection history (on sign-out)."""
        self.state = ReconcileState.IDLE
        self._fresh_at_disconnect = set()
        self._disconnected_at = None
        self._connected_before = False
