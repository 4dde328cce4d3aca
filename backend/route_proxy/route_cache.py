from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from .domain import RouteResult


@dataclass
class CacheEntry:
    key: str
    value: RouteResult
    created_at: float


class RouteCacheStore:
    """TTL map from request fingerprint to a computed ``RouteResult``.

    Expired entries are dropped lazily on read and in bulk by ``sweep()``.
    ``max_entries`` caps the map so a sweep never walks an unbounded dict;
    when exceeded the oldest entry goes first.
    """

    def __init__(
        self,
        *,
        ttl_s: int,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = max(0, int(ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = Lock()
        self._items: OrderedDict[str, CacheEntry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def ttl_s(self) -> int:
        return self._ttl_s

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.created_at) >= self._ttl_s

    def get(self, key: str) -> RouteResult | None:
        now = self._clock()
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry, now):
                self._items.pop(key, None)
                self._expirations += 1
                self._misses += 1
                return None

            self._hits += 1
            # RouteResult is frozen, so handing out the stored object is safe.
            return entry.value

    def set(self, key: str, value: RouteResult) -> None:
        now = self._clock()
        with self._lock:
            self._items.pop(key, None)
            self._items[key] = CacheEntry(key=key, value=value, created_at=now)

            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, entry in self._items.items() if self._is_expired(entry, now)]
            for k in stale:
                del self._items[k]
            self._expirations += len(stale)
            return len(stale)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }
