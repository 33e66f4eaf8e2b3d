"""
Bounded TTL cache used for scheduler locations.

Unlike a plain expiring cache, an expired entry is *hidden* from ``get`` but
kept until it is evicted, overwritten or deleted, so the resolver can still
``peek`` at it and offer a stale location when the directory is unreachable.

Architecture:
    ::

        CacheBackend (Protocol)
        └── InMemoryCache  : single-process, bounded LRU, per-key ttl

        API: get(key) → value | None          (fresh entries only)
             peek(key) → CacheEntry | None    (fresh or expired)
             set(key, value, ttl_seconds=None)
             delete(key)
             exists(key) → bool
             clear()

Examples:
    >>> from aoconnect.core.cache import InMemoryCache
    >>> cache = InMemoryCache(max_size=100, default_ttl_seconds=60)
    >>> cache.set("process:abc", {"url": "https://su.example"})
    >>> cache.get("process:abc")
    {'url': 'https://su.example'}

Tags:
    cache, ttl, lru, stale-while-error, aoconnect
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its timing."""

    value: Any
    stored_at: float
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheBackend(Protocol):
    """Protocol for cache implementations the resolver can use."""

    def get(self, key: str) -> Any | None:
        """Return the fresh value for *key*, or ``None``."""
        ...

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry for *key* whether or not it has expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store *value*; ``ttl_seconds=None`` uses the default ttl."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*. No-op if absent."""
        ...

    def clear(self) -> None:
        """Remove everything."""
        ...


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached. Intended for use from a
    single event loop; the resolver serialises lookups per key itself.

    Attributes:
        max_size: Maximum number of keys before LRU eviction.
        default_ttl_seconds: Default TTL for keys (``None`` → no expiry).
    """

    def __init__(
        self,
        *,
        max_size: int = 100,
        default_ttl_seconds: float | None = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Any | None:
        """Retrieve a fresh value by key."""
        entry = self._store.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        self._store.move_to_end(key)
        return entry.value

    def peek(self, key: str) -> CacheEntry | None:
        """Retrieve the raw entry, expired or not. Does not touch LRU order."""
        return self._store.get(key)

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        now = self._clock()
        expires_at = (now + ttl) if ttl is not None else None

        if key not in self._store and len(self._store) >= self._max_size:
            self._store.popitem(last=False)

        self._store[key] = CacheEntry(value=value, stored_at=now, expires_at=expires_at)
        self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        """Remove a key from the cache."""
        self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        entry = self._store.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def clear(self) -> None:
        """Remove all keys."""
        self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys (expired included)."""
        return len(self._store)


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "InMemoryCache",
]
