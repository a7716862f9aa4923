"""Bounded TTL + LRU store of classification verdicts keyed by fingerprint."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict

from spamwatch.settings import Settings


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Cached verdict. Entries are replaced on recompute, never mutated."""

    verdict: bool
    message: str
    created_at: float


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    expirations: int
    evictions: int
    size: int
    capacity: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "size": self.size,
            "capacity": self.capacity,
        }


class PredictionCache:
    """Thread-safe verdict cache.

    Expired entries count as misses and are dropped when touched; when the
    cache is full, expired entries are swept before the least-recently-used
    live entry is evicted. Both ``get`` hits and ``put`` refresh recency.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PredictionCache":
        return cls(ttl_seconds=settings.cache.ttl_seconds, max_entries=settings.cache.max_entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[fingerprint]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(fingerprint)
            self._hits += 1
            return entry

    def put(self, fingerprint: str, verdict: bool, message: str) -> CacheEntry:
        with self._lock:
            now = self._clock()
            entry = CacheEntry(verdict=verdict, message=message, created_at=now)
            if fingerprint in self._entries:
                self._entries[fingerprint] = entry
                self._entries.move_to_end(fingerprint)
                return entry
            if len(self._entries) >= self.max_entries:
                self._purge_expired_locked(now)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[fingerprint] = entry
            return entry

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""

        with self._lock:
            return self._purge_expired_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                expirations=self._expirations,
                evictions=self._evictions,
                size=len(self._entries),
                capacity=self.max_entries,
            )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self.ttl_seconds

    def _purge_expired_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        return len(expired)


__all__ = ["CacheEntry", "CacheStats", "PredictionCache"]
