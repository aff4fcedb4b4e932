"""Geocode cache store interface and a bounded in-process implementation."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Protocol

from cachetools import LRUCache

from ..config import GEOCODE_MEMORY_CACHE_SIZE
from ..models import CacheEntry, LatLng

__all__ = ["GeocodeCacheStore", "InMemoryGeocodeCache", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GeocodeCacheStore(Protocol):
    """Storage contract used by the geocoding service.

    ``bulk_get`` returns entries for the requested bucket keys that exist,
    whether or not they carry a country. ``upsert`` inserts or replaces the
    entry for its bucket and stamps ``cached_at``.
    """

    def bulk_get(self, keys: Iterable[LatLng]) -> Dict[LatLng, CacheEntry]: ...

    def upsert(self, entry: CacheEntry) -> CacheEntry: ...


class InMemoryGeocodeCache:
    """LRU-bounded cache keyed by rounded (lat, lng); safe across threads."""

    def __init__(
        self,
        maxsize: int = GEOCODE_MEMORY_CACHE_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._entries: LRUCache[LatLng, CacheEntry] = LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def bulk_get(self, keys: Iterable[LatLng]) -> Dict[LatLng, CacheEntry]:
        found: Dict[LatLng, CacheEntry] = {}
        with self._lock:
            for key in keys:
                entry = self._entries.get(key)
                if entry is not None:
                    found[key] = entry
        return found

    def upsert(self, entry: CacheEntry) -> CacheEntry:
        stamped = replace(entry, cached_at=self._clock())
        with self._lock:
            self._entries[stamped.key] = stamped
        return stamped

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
