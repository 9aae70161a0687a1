"""In-process caches owned by the pipeline.

Both structures are mutated only from the event loop thread, so they carry no
locks. Nothing here is persisted: a restart starts with empty caches.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_SEEN_TTL_SECONDS = 10 * 60
DEFAULT_SEEN_MAX_ENTRIES = 10_000
DEFAULT_CACHE_MAX_ENTRIES = 50_000

Clock = Callable[[], float]


class SeenEventCache:
    """Bounded, time-windowed set of already-processed event hashes.

    Entries expire after ``ttl_seconds``. When the set still holds more than
    ``max_entries`` after expiry, the oldest-inserted entries are dropped.
    Hits do not refresh an entry: this is a time and capacity bound, not an LRU.

    Example:
        ```python
        seen = SeenEventCache(ttl_seconds=600, max_entries=10_000)
        if seen.mark_and_check(trace_hash):
            return  # duplicate delivery
        ```
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_SEEN_TTL_SECONDS,
        max_entries: int = DEFAULT_SEEN_MAX_ENTRIES,
        clock: Clock = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        # dicts keep insertion order, which is the eviction order
        self._seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._seen

    def sweep(self, now: float | None = None) -> int:
        """Evict expired entries, then trim to capacity. Returns the evicted count."""
        now = self._clock() if now is None else now
        before = len(self._seen)

        expired = [k for k, ts in self._seen.items() if now - ts > self._ttl]
        for k in expired:
            del self._seen[k]

        extra = len(self._seen) - self._max_entries
        if extra > 0:
            for k in list(self._seen)[:extra]:
                del self._seen[k]

        return before - len(self._seen)

    def mark_and_check(self, event_id: str, now: float | None = None) -> bool:
        """Record ``event_id`` and report whether it had already been seen."""
        now = self._clock() if now is None else now
        self.sweep(now)
        if event_id in self._seen:
            return True
        self._seen[event_id] = now
        return False


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    fetched_at: float
    value: V


class TTLCache(Generic[K, V]):
    """Read-through friendly TTL cache.

    ``get`` returns the whole entry so a cached ``None`` (a negative result)
    can be told apart from a miss.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Clock = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: K) -> CacheEntry[V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self._ttl:
            del self._entries[key]
            return None
        return entry

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(fetched_at=now, value=value)
        if len(self._entries) > self._max_entries:
            self._evict(now)

    def _evict(self, now: float) -> None:
        for k in [k for k, e in self._entries.items() if now - e.fetched_at >= self._ttl]:
            del self._entries[k]
        extra = len(self._entries) - self._max_entries
        if extra > 0:
            for k in list(self._entries)[:extra]:
                del self._entries[k]

    def clear(self) -> None:
        self._entries.clear()
