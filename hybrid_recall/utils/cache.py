"""Bounded insertion-ordered cache for text embeddings."""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Generic, TypeVar

from hybrid_recall.utils.metrics import (
    CACHE_HIT_RATE,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    CACHE_SIZE,
)

V = TypeVar("V")


class EmbeddingCache(Generic[V]):
    """
    In-memory cache with a hard capacity and oldest-first eviction.

    Reads never reorder entries, so the entry evicted on overflow is always
    the one inserted earliest. Each insertion evicts at most one entry. All
    mutation happens under a single lock.
    """

    def __init__(self, max_size: int = 1000) -> None:
        """
        Initialize the cache.

        Parameters
        ----------
        max_size:
            Maximum number of entries to keep.

        """
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._data: OrderedDict[str, V] = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    def _update_metrics(self) -> None:
        total = self._hits + self._misses
        CACHE_HIT_RATE.set(self._hits / total if total else 0.0)
        CACHE_SIZE.set(len(self._data))

    def get(self, key: str) -> V | None:
        """Return the cached value for ``key`` or ``None`` on a miss."""
        with self._lock:
            value = self._data.get(key)
            if value is None:
                self._misses += 1
                CACHE_MISSES_TOTAL.inc()
            else:
                self._hits += 1
                CACHE_HITS_TOTAL.inc()
            self._update_metrics()
            return value

    def put(self, key: str, value: V) -> V:
        """
        Insert ``value`` under ``key`` unless the key is already cached.

        Returns the value that is cached after the call, which is the earlier
        value when a concurrent writer got there first.
        """
        with self._lock:
            existing = self._data.get(key)
            if existing is not None:
                return existing
            self._data[key] = value
            if len(self._data) > self.max_size:
                self._data.popitem(last=False)
            self._update_metrics()
            return value

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        with self._lock:
            self._data.clear()
            self._hits = 0
            self._misses = 0
            self._update_metrics()

    def keys(self) -> list[str]:
        """Return keys from oldest to newest."""
        with self._lock:
            return list(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get_stats(self) -> dict[str, float | int]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._data),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / total) if total else 0.0,
            }


__all__ = ["EmbeddingCache"]
