"""Thread-safe in-memory TimelineStore, used by tests and one-off runs."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import StorageError
from ..geocoding.cache import utc_now
from ..models import CacheEntry, LatLng, Place, Segment, Stop, is_resolved
from ..utils import to_utc_aware
from .base import QueueKey, queue_key


def _copy_stop(stop: Stop) -> Stop:
    return replace(stop)


class InMemoryTimelineStore:
    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self._cache: Dict[LatLng, CacheEntry] = {}
        self._stops: Dict[str, Stop] = {}
        self._segments: List[Segment] = []

    # Geocode cache -----------------------------------------------------

    def upsert_cache_entry(self, entry: CacheEntry) -> CacheEntry:
        stamped = replace(entry, cached_at=self._clock())
        with self._lock:
            self._cache[stamped.key] = stamped
        return stamped

    upsert = upsert_cache_entry

    def bulk_get(self, keys: Iterable[LatLng]) -> Dict[LatLng, CacheEntry]:
        with self._lock:
            return {key: self._cache[key] for key in keys if key in self._cache}

    # Stops and segments -------------------------------------------------

    def _check_new_stop_ids(self, stops: Sequence[Stop]) -> None:
        seen = set()
        for stop in stops:
            if stop.stop_id in self._stops or stop.stop_id in seen:
                raise StorageError(f"Duplicate stop id {stop.stop_id}")
            seen.add(stop.stop_id)

    def bulk_insert_stops(self, stops: Sequence[Stop]) -> int:
        self.save_timeline(stops, ())
        return len(stops)

    def bulk_insert_segments(self, segments: Sequence[Segment]) -> int:
        with self._lock:
            self._segments.extend(segments)
        return len(segments)

    def save_timeline(self, stops: Sequence[Stop], segments: Sequence[Segment]) -> None:
        with self._lock:
            self._check_new_stop_ids(stops)
            for stop in stops:
                self._stops[stop.stop_id] = _copy_stop(stop)
            self._segments.extend(segments)

    def stops_in_range(self, start: datetime, end: datetime) -> List[Stop]:
        lo, hi = to_utc_aware(start), to_utc_aware(end)
        with self._lock:
            found = [_copy_stop(s) for s in self._stops.values() if lo <= s.start <= hi]
        found.sort(key=lambda s: s.start)
        return found

    def segments_in_range(self, start: datetime, end: datetime) -> List[Segment]:
        lo, hi = to_utc_aware(start), to_utc_aware(end)
        with self._lock:
            found = [s for s in self._segments if lo <= s.start <= hi]
        found.sort(key=lambda s: s.start)
        return found

    def count_unresolved_stops(self) -> int:
        with self._lock:
            return sum(1 for s in self._stops.values() if not is_resolved(s.place))

    def list_unresolved_stops(
        self, limit: int, after: Optional[QueueKey] = None
    ) -> List[Stop]:
        floor = None if after is None else (to_utc_aware(after[0]), after[1])
        with self._lock:
            pending = [
                _copy_stop(s)
                for s in self._stops.values()
                if not is_resolved(s.place) and (floor is None or queue_key(s) > floor)
            ]
        pending.sort(key=queue_key)
        return pending[: max(0, limit)]

    def update_stop_place(self, stop_id: str, place: Place) -> bool:
        if place.is_empty:
            return False
        with self._lock:
            stop = self._stops.get(stop_id)
            if stop is None:
                return False
            stop.apply_place(place)
        return True


__all__ = ["InMemoryTimelineStore"]
