"""Persistence contract for stops, segments and geocode cache entries."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..models import CacheEntry, LatLng, Place, Segment, Stop

# Position of a stop in the unresolved queue: (start, stop_id).
QueueKey = Tuple[datetime, str]


class TimelineStore(Protocol):
    """Operations the pipeline needs from a backing store.

    Range queries select records whose ``start`` lies in ``[start, end]``
    (both bounds inclusive) and return them ordered by ``start``. The store
    also satisfies the geocode cache contract (``bulk_get`` / ``upsert``).

    ``save_timeline`` writes the stops and segments of one run all or
    nothing. ``list_unresolved_stops`` pages through stops without a country
    in ``(start, stop_id)`` order, returning only stops after ``after``.
    """

    def upsert_cache_entry(self, entry: CacheEntry) -> CacheEntry: ...

    def upsert(self, entry: CacheEntry) -> CacheEntry: ...

    def bulk_get(self, keys: Iterable[LatLng]) -> Dict[LatLng, CacheEntry]: ...

    def bulk_insert_stops(self, stops: Sequence[Stop]) -> int: ...

    def bulk_insert_segments(self, segments: Sequence[Segment]) -> int: ...

    def save_timeline(self, stops: Sequence[Stop], segments: Sequence[Segment]) -> None: ...

    def stops_in_range(self, start: datetime, end: datetime) -> List[Stop]: ...

    def segments_in_range(self, start: datetime, end: datetime) -> List[Segment]: ...

    def count_unresolved_stops(self) -> int: ...

    def list_unresolved_stops(
        self, limit: int, after: Optional[QueueKey] = None
    ) -> List[Stop]: ...

    def update_stop_place(self, stop_id: str, place: Place) -> bool: ...


def queue_key(stop: Stop) -> QueueKey:
    return stop.start, stop.stop_id


__all__ = ["QueueKey", "TimelineStore", "queue_key"]
