"""Client query cache: a process-wide table of keyed query results.

Every entry tracks its last server value and a staleness state. Entries go
stale when their max-age passes, when a matching invalidation arrives, or
when the background revalidation interval elapses. Subscribed stale entries
are refetched; unsubscribed ones wait for their next subscriber.

All methods run on the event loop thread. Methods that schedule fetches
(subscribe, invalidate, refetch_*) need a running loop.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reelsync.client.keys import CacheKey, MatcherLike, as_matcher, key_class, key_path, make_key
from reelsync.core.config import Settings, get_settings
from reelsync.domain.enums import EntryState
from reelsync.domain.exceptions import QueryFetchException

logger = logging.getLogger(__name__)

Fetcher = Callable[[CacheKey], Awaitable[Any]]
Listener = Callable[["QueryResult"], None]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class FreshnessPolicy:
    """Staleness and retry parameters for one key class (seconds).

    refetch_interval=None disables background revalidation for the class.
    """

    max_age: float = 300.0
    refetch_interval: float | None = 30.0
    refetch_on_focus: bool = True
    gc_time: float = 600.0
    retry_attempts: int = 3
    retry_max_delay: float = 4.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FreshnessPolicy:
        settings = settings or get_settings()
        return cls(
            max_age=settings.cache_max_age_seconds,
            refetch_interval=settings.cache_refetch_interval_seconds,
            refetch_on_focus=settings.cache_refetch_on_focus,
            gc_time=settings.cache_gc_seconds,
            retry_attempts=settings.query_retry_attempts,
            retry_max_delay=settings.query_retry_max_delay_seconds,
        )


@dataclass(frozen=True)
class QueryResult:
    """Read-only view of one entry, handed to subscribers and read()."""

    key: CacheKey
    state: EntryState
    value: Any = None
    has_value: bool = False
    error: QueryFetchException | None = None
    fetched_at: float | None = None

    @property
    def is_loading(self) -> bool:
        """True while the first value is still being fetched."""
        return self.state is EntryState.FETCHING and not self.has_value


@dataclass(frozen=True)
class EntrySnapshot:
    """Saved entry contents; restore() puts these exact objects back.

    invalidation_version lets restore() tell whether an invalidation
    arrived after the snapshot was taken.
    """

    value: Any
    has_value: bool
    fetched_at: float | None
    stale_at: float | None
    invalidated: bool
    error: QueryFetchException | None
    invalidation_version: int = 0


@dataclass(eq=False)
class CacheEntry:
    key: CacheKey
    policy: FreshnessPolicy
    value: Any = None
    has_value: bool = False
    fetched_at: float | None = None
    attempted_at: float | None = None
    stale_at: float | None = None
    invalidated: bool = False
    error: QueryFetchException | None = None
    subscribers: dict[int, Listener] = field(default_factory=dict)
    inflight: asyncio.Task | None = None
    write_version: int = 0
    invalidation_version: int = 0
    idle_since: float | None = None

    def state_at(self, now: float) -> EntryState:
        if self.inflight is not None:
            return EntryState.FETCHING
        if self.error is not None:
            return EntryState.ERROR
        if (
            not self.has_value
            or self.invalidated
            or (self.stale_at is not None and now >= self.stale_at)
        ):
            return EntryState.STALE
        return EntryState.FRESH


class Subscription:
    """Handle for one subscriber; unsubscribe() is idempotent."""

    def __init__(self, cache: QueryCache, key: CacheKey, token: int) -> None:
        self._cache = cache
        self.key = key
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cache._remove_subscriber(self.key, self._token)


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, QueryFetchException) and exc.retriable


class QueryCache:
    """Keyed query results with coalesced fetches and push invalidation.

    Args:
        fetcher: Coroutine function key -> value (usually QueryApi.fetch).
        default_policy: Policy for key classes without an explicit one.
        policies: Per key class (first key segment) overrides.
        clock: Monotonic seconds; injectable for tests.
        sleep: Sleep used between query retries and by the revalidation loop.
        tick: Seconds between background revalidation passes.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        default_policy: FreshnessPolicy | None = None,
        policies: Mapping[Hashable, FreshnessPolicy] | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        tick: float | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._default_policy = default_policy or FreshnessPolicy.from_settings()
        self._policies: dict[Hashable, FreshnessPolicy] = dict(policies or {})
        self._clock = clock
        self._sleep = sleep
        self._tick = tick if tick is not None else get_settings().cache_revalidate_tick_seconds
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._tokens = itertools.count(1)
        self._loop_task: asyncio.Task | None = None

    # ---- Policies ----

    def set_policy(self, key_class_: Hashable, policy: FreshnessPolicy) -> None:
        """Set the policy for a key class; applies to entries created afterwards."""
        self._policies[key_class_] = policy

    def policy_for(self, key: CacheKey) -> FreshnessPolicy:
        return self._policies.get(key_class(key), self._default_policy)

    # ---- Reads and writes ----

    def __contains__(self, key: object) -> bool:
        return isinstance(key, tuple) and make_key(*key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def read(self, key: CacheKey) -> QueryResult | None:
        """Current snapshot of an entry, or None if the key is not cached."""
        entry = self._entries.get(make_key(*key))
        return self._result(entry) if entry is not None else None

    def state(self, key: CacheKey) -> EntryState | None:
        entry = self._entries.get(make_key(*key))
        return entry.state_at(self._clock()) if entry is not None else None

    def peek(self, key: CacheKey, default: Any = None) -> Any:
        """Cached value without triggering a fetch."""
        entry = self._entries.get(make_key(*key))
        if entry is None or not entry.has_value:
            return default
        return entry.value

    async def get(self, key: CacheKey) -> Any:
        """Return the value for key, fetching it unless a fresh one is cached.

        Concurrent callers share one in-flight fetch. When the fetch fails
        and an older value exists, that value is returned.

        Raises:
            QueryFetchException: If the fetch failed and no value was ever cached.
        """
        key = make_key(*key)
        entry = self._ensure(key)
        if entry.has_value and entry.state_at(self._clock()) is EntryState.FRESH:
            return entry.value
        await asyncio.shield(self._start_fetch(entry))
        if entry.has_value:
            return entry.value
        raise entry.error or QueryFetchException(key_path(key), "no value fetched")

    def set(self, key: CacheKey, value: Any) -> None:
        """Write a value as fresh server state and notify subscribers."""
        entry = self._ensure(make_key(*key))
        self._write(entry, value)
        self._notify(entry)

    def update(self, key: CacheKey, updater: Callable[[Any], Any]) -> Any:
        """Replace the value with updater(old value); returns the new value."""
        entry = self._ensure(make_key(*key))
        value = updater(entry.value if entry.has_value else None)
        self._write(entry, value)
        self._notify(entry)
        return value

    def write_version(self, key: CacheKey) -> int | None:
        entry = self._entries.get(make_key(*key))
        return entry.write_version if entry is not None else None

    def find(self, target: MatcherLike) -> list[CacheKey]:
        """Keys currently cached that match target."""
        matcher = as_matcher(target)
        return [key for key in self._entries if matcher.matches(key)]

    # ---- Invalidation ----

    def invalidate(self, target: MatcherLike) -> list[CacheKey]:
        """Mark every matching entry stale and refetch the subscribed ones.

        Args:
            target: Exact key tuple, KeyMatcher, or predicate over keys.

        Returns:
            Keys that matched.
        """
        matcher = as_matcher(target)
        matched: list[CacheKey] = []
        for entry in list(self._entries.values()):
            if not matcher.matches(entry.key):
                continue
            matched.append(entry.key)
            entry.invalidated = True
            entry.invalidation_version += 1
            if entry.subscribers and entry.inflight is None:
                self._start_fetch(entry)
        if matched:
            logger.debug("Invalidated %s cache entries", len(matched))
        return matched

    def now(self) -> float:
        """Current time on the cache clock."""
        return self._clock()

    def fetched_since(self, since: float) -> list[CacheKey]:
        """Keys whose value was written at or after since."""
        return [
            k for k, e in self._entries.items() if e.fetched_at is not None and e.fetched_at >= since
        ]

    def fresh_keys(self) -> list[CacheKey]:
        now = self._clock()
        return [k for k, e in self._entries.items() if e.state_at(now) is EntryState.FRESH]

    def refetch_active(self) -> list[CacheKey]:
        """Refetch every subscribed entry that is stale or errored."""
        now = self._clock()
        started = []
        for entry in list(self._entries.values()):
            if entry.subscribers and entry.state_at(now) in (EntryState.STALE, EntryState.ERROR):
                self._start_fetch(entry)
                started.append(entry.key)
        return started

    def refetch_stale(self) -> list[CacheKey]:
        """Window focus: refetch subscribed stale entries whose policy allows it."""
        now = self._clock()
        started = []
        for entry in list(self._entries.values()):
            if not entry.policy.refetch_on_focus or not entry.subscribers:
                continue
            if entry.state_at(now) in (EntryState.STALE, EntryState.ERROR):
                self._start_fetch(entry)
                started.append(entry.key)
        return started

    def revalidate_due(self) -> list[CacheKey]:
        """Mark entries older than their refetch interval stale; refetch subscribed ones.

        This bounds how long any entry stays fresh when no change events
        arrive (for example while the push channel is down).
        """
        now = self._clock()
        due = []
        for entry in list(self._entries.values()):
            interval = entry.policy.refetch_interval
            if interval is None or entry.inflight is not None:
                continue
            # The interval runs from the last attempt, failed or not.
            last = max(
                (t for t in (entry.fetched_at, entry.attempted_at) if t is not None),
                default=None,
            )
            if last is None or now - last < interval:
                continue
            due.append(entry.key)
            was_stale = entry.invalidated
            entry.invalidated = True
            if entry.subscribers:
                self._start_fetch(entry)
            elif not was_stale:
                self._notify(entry)
        return due

    def evict_idle(self) -> list[CacheKey]:
        """Drop entries with no subscribers and no fetch for longer than gc_time."""
        now = self._clock()
        evicted = [
            key
            for key, entry in self._entries.items()
            if not entry.subscribers
            and entry.inflight is None
            and entry.idle_since is not None
            and now - entry.idle_since >= entry.policy.gc_time
        ]
        for key in evicted:
            del self._entries[key]
        if evicted:
            logger.debug("Evicted %s idle cache entries", len(evicted))
        return evicted

    def clear(self) -> None:
        """Drop every entry (on sign-out). In-flight results are not stored."""
        self._entries.clear()

    def remove(self, key: CacheKey) -> bool:
        """Drop one entry; an in-flight fetch for it completes but is not stored."""
        return self._entries.pop(make_key(*key), None) is not None

    # ---- Snapshots (optimistic mutations) ----

    def snapshot(self, keys: Iterable[CacheKey]) -> dict[CacheKey, EntrySnapshot]:
        snapshots = {}
        for key in keys:
            entry = self._entries.get(make_key(*key))
            if entry is None:
                continue
            snapshots[entry.key] = EntrySnapshot(
                value=entry.value,
                has_value=entry.has_value,
                fetched_at=entry.fetched_at,
                stale_at=entry.stale_at,
                invalidated=entry.invalidated,
                error=entry.error,
                invalidation_version=entry.invalidation_version,
            )
        return snapshots

    def restore(
        self,
        snapshots: Mapping[CacheKey, EntrySnapshot],
        if_version: Mapping[CacheKey, int] | None = None,
    ) -> list[CacheKey]:
        """Put snapshotted contents back and notify subscribers synchronously.

        Args:
            snapshots: From snapshot().
            if_version: Optional key -> write_version; entries written since
                that version are left alone.

        Returns:
            Keys actually restored.
        """
        restored = []
        for key, snap in snapshots.items():
            entry = self._entries.get(key)
            missed_invalidation = False
            if entry is None:
                entry = self._ensure(key)
            elif if_version is not None and key in if_version and entry.write_version != if_version[key]:
                logger.debug("Not restoring %s: newer write landed", key_path(key))
                continue
            else:
                missed_invalidation = entry.invalidation_version != snap.invalidation_version
            entry.value = snap.value
            entry.has_value = snap.has_value
            entry.fetched_at = snap.fetched_at
            entry.stale_at = snap.stale_at
            entry.invalidated = snap.invalidated or missed_invalidation
            entry.error = snap.error
            entry.write_version += 1
            restored.append(key)
            self._notify(entry)
            if missed_invalidation and entry.subscribers and entry.inflight is None:
                self._start_fetch(entry)
        return restored

    # ---- Subscriptions ----

    def subscribe(self, key: CacheKey, callback: Listener) -> Subscription:
        """Register callback for every change of key.

        The entry is created if needed and fetched unless it holds a fresh
        value or a fetch is already running.
        """
        key = make_key(*key)
        entry = self._ensure(key)
        token = next(self._tokens)
        entry.subscribers[token] = callback
        entry.idle_since = None
        if entry.state_at(self._clock()) in (EntryState.STALE, EntryState.ERROR):
            self._start_fetch(entry)
        return Subscription(self, key, token)

    def subscriber_count(self, key: CacheKey) -> int:
        entry = self._entries.get(make_key(*key))
        return len(entry.subscribers) if entry is not None else 0

    def _remove_subscriber(self, key: CacheKey, token: int) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.subscribers.pop(token, None)
        if not entry.subscribers:
            entry.idle_since = self._clock()

    # ---- Lifecycle ----

    def start(self) -> None:
        """Start the background revalidation and eviction loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(
                self._maintenance_loop(), name="reelsync-cache-maintenance"
            )

    async def close(self) -> None:
        """Stop the background loop and cancel in-flight fetches."""
        tasks = [e.inflight for e in self._entries.values() if e.inflight is not None]
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def settle(self) -> None:
        """Wait until no fetch is in flight, including refetches queued by landing ones."""
        while True:
            tasks = [e.inflight for e in self._entries.values() if e.inflight is not None]
            if not tasks:
                return
            await asyncio.gather(*(asyncio.shield(t) for t in tasks), return_exceptions=True)

    async def _maintenance_loop(self) -> None:
        while True:
            await self._sleep(self._tick)
            self.revalidate_due()
            self.evict_idle()

    # ---- Internals ----

    def _ensure(self, key: CacheKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, policy=self.policy_for(key), idle_since=self._clock())
            self._entries[key] = entry
        return entry

    def _write(self, entry: CacheEntry, value: Any) -> None:
        now = self._clock()
        entry.value = value
        entry.has_value = True
        entry.fetched_at = now
        entry.stale_at = now + entry.policy.max_age
        entry.invalidated = False
        entry.error = None
        entry.write_version += 1

    def _result(self, entry: CacheEntry) -> QueryResult:
        return QueryResult(
            key=entry.key,
            state=entry.state_at(self._clock()),
            value=entry.value,
            has_value=entry.has_value,
            error=entry.error,
            fetched_at=entry.fetched_at,
        )

    def _notify(self, entry: CacheEntry) -> None:
        if not entry.subscribers:
            return
        result = self._result(entry)
        for callback in list(entry.subscribers.values()):
            try:
                callback(result)
            except Exception:
                logger.exception("Cache subscriber failed for %s", key_path(entry.key))

    def _start_fetch(self, entry: CacheEntry) -> asyncio.Task:
        if entry.inflight is not None:
            return entry.inflight
        entry.attempted_at = self._clock()
        entry.inflight = asyncio.get_running_loop().create_task(
            self._run_fetch(entry), name=f"fetch {key_path(entry.key)}"
        )
        self._notify(entry)
        return entry.inflight

    async def _fetch_with_retry(self, entry: CacheEntry) -> Any:
        policy = entry.policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retry_attempts),
            wait=wait_exponential(multiplier=1, max=policy.retry_max_delay),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(self._fetcher, entry.key)

    async def _run_fetch(self, entry: CacheEntry) -> None:
        write_version = entry.write_version
        invalidation_version = entry.invalidation_version
        value: Any = None
        error: QueryFetchException | None = None
        try:
            value = await self._fetch_with_retry(entry)
        except asyncio.CancelledError:
            entry.inflight = None
            raise
        except QueryFetchException as exc:
            error = exc
        except Exception as exc:
            logger.exception("Unexpected fetch error for %s", key_path(entry.key))
            error = QueryFetchException(key_path(entry.key), str(exc))
        entry.inflight = None

        if self._entries.get(entry.key) is not entry:
            logger.debug("Dropping result for evicted key %s", key_path(entry.key))
            if error is None:
                entry.value, entry.has_value = value, True
            return
        refetch = entry.invalidation_version != invalidation_version
        if error is not None:
            entry.error = error
            logger.warning("Fetch failed for %s: %s", key_path(entry.key), error.message)
        elif entry.write_version != write_version:
            logger.debug("Discarding fetched %s: a newer write landed", key_path(entry.key))
            # A rolled-back entry can still be marked stale.
            refetch = refetch or entry.invalidated
        else:
            self._write(entry, value)
            if refetch:
                entry.invalidated = True
        self._notify(entry)

        if refetch and entry.subscribers:
            self._start_fetch(entry)
