"""Cache of merged provider metadata keyed by (chain id, address).

A hit skips the provider fan-out entirely. ``None`` metadata records that
every provider answered "not found", so repeated lookups of unknown
contracts do not hit the providers again until the entry expires.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

from spamwatch.settings import Settings

from .base import ContractMetadata

LOGGER = logging.getLogger(__name__)

NO_DATA_SOURCE = "none"

CacheKey = Tuple[int, str]


@dataclass(frozen=True, slots=True)
class MetadataCacheEntry:
    metadata: ContractMetadata | None
    source: str
    created_at: float


@dataclass(frozen=True, slots=True)
class MetadataCacheStats:
    hits: int
    misses: int
    stores: int
    expirations: int
    evictions: int
    size: int
    capacity: int
    hits_by_source: Dict[str, int] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stores": self.stores,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "size": self.size,
            "capacity": self.capacity,
            "hit_rate": round(self.hit_rate, 4),
            "hits_by_source": dict(self.hits_by_source),
        }


class MetadataCache:
    """Thread-safe TTL + LRU store of canonical provider metadata."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 21600.0,
        max_entries: int = 50000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, MetadataCacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits_by_source: Counter[str] = Counter()
        self._misses = 0
        self._stores = 0
        self._expirations = 0
        self._evictions = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetadataCache":
        section = settings.metadata_cache
        return cls(ttl_seconds=section.ttl_seconds, max_entries=section.max_entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, chain_id: int, address: str) -> MetadataCacheEntry | None:
        key = (chain_id, address)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() - entry.created_at >= self.ttl_seconds:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits_by_source[entry.source] += 1
            return entry

    def put(self, chain_id: int, address: str, metadata: ContractMetadata | None) -> MetadataCacheEntry:
        key = (chain_id, address)
        with self._lock:
            now = self._clock()
            entry = MetadataCacheEntry(
                metadata=metadata,
                source=metadata.source if metadata is not None else NO_DATA_SOURCE,
                created_at=now,
            )
            self._stores += 1
            if key in self._entries:
                self._entries[key] = entry
                self._entries.move_to_end(key)
                return entry
            if len(self._entries) >= self.max_entries:
                self._purge_expired_locked(now)
            while len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                LOGGER.debug("Evicted cached metadata for %s on chain %s", evicted_key[1], evicted_key[0])
            self._entries[key] = entry
            return entry

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""

        with self._lock:
            return self._purge_expired_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> MetadataCacheStats:
        with self._lock:
            return MetadataCacheStats(
                hits=sum(self._hits_by_source.values()),
                misses=self._misses,
                stores=self._stores,
                expirations=self._expirations,
                evictions=self._evictions,
                size=len(self._entries),
                capacity=self.max_entries,
                hits_by_source=dict(self._hits_by_source),
            )

    def _purge_expired_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now - entry.created_at >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        return len(expired)


__all__ = ["MetadataCache", "MetadataCacheEntry", "MetadataCacheStats", "NO_DATA_SOURCE"]
