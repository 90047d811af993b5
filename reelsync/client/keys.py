"""Cache keys and key matchers.

A cache key is a tuple of segments: the API path prefix first (the key
class), then identifiers and sub-collection names, optionally followed by
a QueryParams segment for filters. Keys are compared by value.

Matchers select sets of keys for invalidation:

    ExactKey(("/api/projects", "p1"))       only that key
    KeyPrefix(("/api/projects", "p1"))      that key and every key under it
    KeyPredicate(lambda key: ...)           anything the function accepts
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Union, runtime_checkable
from urllib.parse import quote, urlencode

CacheKey = tuple[Hashable, ...]


@dataclass(frozen=True)
class QueryParams:
    """Immutable, order-independent filter segment of a cache key."""

    items: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, params: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryParams:
        merged = dict(params or {}, **kwargs)
        return cls(tuple(sorted((str(k), _freeze(v)) for k, v in merged.items() if v is not None)))

    def as_dict(self) -> dict[str, Any]:
        return dict(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)


def _freeze(value: Any) -> Hashable:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, Mapping):
        return QueryParams.of(value)
    return value


def make_key(*segments: Any) -> CacheKey:
    """Build a cache key; dict segments become QueryParams.

    Raises:
        ValueError: If no segment is given.
    """
    if not segments:
        raise ValueError("A cache key needs at least one segment")
    return tuple(QueryParams.of(s) if isinstance(s, Mapping) else s for s in segments)


def key_class(key: CacheKey) -> Hashable:
    """First segment; freshness policies are configured per key class."""
    return key[0]


def key_path(key: CacheKey) -> str:
    """Turn a key into the GET path the Query API serves.

    ("/api/projects", "p1", "comments") -> "/api/projects/p1/comments"
    ("/api/projects", {"status": "Edição"}) -> "/api/projects?status=Edi%C3%A7%C3%A3o"
    """
    parts: list[str] = []
    query: dict[str, Any] = {}
    for segment in key:
        if isinstance(segment, QueryParams):
            query.update(segment.as_dict())
        else:
            text = str(segment)
            parts.append(text.strip("/") if parts else text.rstrip("/"))
    path = "/".join(parts[:1] + [quote(p, safe="") for p in parts[1:]])
    if query:
        path = f"{path}?{urlencode(query, doseq=True)}"
    return path


@runtime_checkable
class KeyMatcher(Protocol):
    """Anything that can decide whether a cache key is affected."""

    def matches(self, key: CacheKey) -> bool: ...


@dataclass(frozen=True)
class ExactKey:
    key: CacheKey

    def matches(self, key: CacheKey) -> bool:
        return key == self.key


@dataclass(frozen=True)
class KeyPrefix:
    """Matches every key that starts with prefix (including prefix itself)."""

    prefix: CacheKey

    def matches(self, key: CacheKey) -> bool:
        return len(key) >= len(self.prefix) and key[: len(self.prefix)] == self.prefix


@dataclass(frozen=True)
class KeyPredicate:
    predicate: Callable[[CacheKey], bool]

    def matches(self, key: CacheKey) -> bool:
        return bool(self.predicate(key))


@dataclass(frozen=True)
class AnyOf:
    """Union of matchers."""

    matchers: tuple[KeyMatcher, ...]

    def matches(self, key: CacheKey) -> bool:
        return any(m.matches(key) for m in self.matchers)


MatcherLike = Union[KeyMatcher, CacheKey, Callable[[CacheKey], bool]]


def as_matcher(target: MatcherLike) -> KeyMatcher:
    """Coerce a key tuple, matcher, or predicate into a KeyMatcher.

    Raises:
        TypeError: For anything else.
    """
    if isinstance(target, KeyMatcher):
        return target
    if isinstance(target, tuple):
        return ExactKey(make_key(*target))
    if callable(target):
        return KeyPredicate(target)
    raise TypeError(f"Cannot match cache keys with {target!r}")


def any_of(targets: Iterable[MatcherLike]) -> KeyMatcher:
    return AnyOf(tuple(as_matcher(t) for t in targets))
