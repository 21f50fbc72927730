"""In-process response caching with TTL and capacity eviction.

:class:`CacheStore` is the storage-agnostic interface consumed by the
request pipeline; :class:`MemoryCacheStore` is the default implementation.
Entries are immutable: refreshing a key stores a brand-new
:class:`CacheEntry` over the old one.

An entry is valid while ``now < created_at + max_age``.  Expired entries
are treated as absent by :meth:`CacheStore.get` (and evicted on the way),
and can be swept in bulk with :meth:`CacheStore.cleanup`.

See Also:
    :func:`~steadyhttp.cache.keys.make_cache_key` -- builds the keys.
    :class:`~steadyhttp.models.CachePolicy` -- per-call cache settings.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from steadyhttp.response import ApiResponse

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current time, the default cache clock."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A cached response together with its lifetime.

    Attributes:
        key: The cache key the entry is stored under.
        response: The cached success envelope.
        created_at: When the response was stored.
        max_age: How long the entry stays valid.
    """

    key: str
    response: ApiResponse
    created_at: datetime
    max_age: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.created_at + self.max_age

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """``True`` while *now* is strictly before :attr:`expires_at`."""
        return (now or utcnow()) < self.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return not self.is_valid(now)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def freshness_ratio(self, now: Optional[datetime] = None) -> float:
        """``1.0`` when just stored, ``0.0`` at expiry, negative afterwards."""
        if self.max_age <= timedelta(0):
            return 0.0
        return 1.0 - self.age(now) / self.max_age


class CacheStore(ABC):
    """Storage interface for cached responses.

    Implementations must tolerate concurrent calls from many in-flight
    requests: a ``get`` racing a ``set`` for the same key returns either
    the old or the new entry, never a partial one.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the valid entry for *key*, or ``None``; evicts expired entries."""

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None:
        """Store *entry*, evicting the oldest entry first when full and *key* is new."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key* if present."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    async def cleanup(self, cutoff: datetime) -> None:
        """Remove every entry that expired before *cutoff*."""

    @abstractmethod
    async def size(self) -> int:
        """Number of stored entries, expired ones included until evicted."""


class MemoryCacheStore(CacheStore):
    """Dictionary-backed :class:`CacheStore` with a capacity limit.

    A :class:`threading.Lock` guards the dictionary so one store can be
    shared by clients running on different threads or event loops.

    Args:
        max_size: Maximum number of entries kept at once.
        clock: Returns the current time; injectable for tests.

    Example::

        store = MemoryCacheStore(max_size=50)
        await store.set(key, CacheEntry(key, response, utcnow(), timedelta(minutes=5)))
        hit = await store.get(key)
    """

    def __init__(self, max_size: int = 100, clock: Clock = utcnow) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = entry

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def cleanup(self, cutoff: datetime) -> None:
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.expires_at < cutoff]
            for key in stale:
                del self._entries[key]

    async def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Snapshot of the stored keys, in insertion order."""
        with self._lock:
            return list(self._entries)

    def _evict_oldest(self) -> None:
        """Drop the entry with the earliest ``created_at``. Caller holds the lock."""
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda key: self._entries[key].created_at)
        del self._entries[oldest_key]
