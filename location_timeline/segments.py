"""Connect consecutive stops into travel segments."""

from __future__ import annotations

import logging
from bisect import bisect_left, bisect_right
from typing import List, Optional, Protocol, Sequence, Set, Tuple

from .config import ROUTE_SAMPLE_INTERVAL_METERS
from .errors import TimelineOrderError
from .geometry import consecutive_distances_m, haversine_miles, is_valid_coordinate
from .models import BatchGeocodeResult, LatLng, Segment, Stop
from .stops import TimedPoint, ensure_chronological

LOGGER = logging.getLogger(__name__)


class BatchGeocoder(Protocol):
    def resolve_batch(self, coordinates: Sequence[LatLng]) -> BatchGeocodeResult: ...


def sample_by_distance(
    points: Sequence[TimedPoint], interval_m: float = ROUTE_SAMPLE_INTERVAL_METERS
) -> List[TimedPoint]:
    """Thin an ordered path to roughly one point per ``interval_m`` travelled.

    Distance accumulates between consecutive points; whenever the running
    total reaches ``interval_m`` the current point is emitted and the total
    resets. The first and last points are always included.
    """

    if interval_m <= 0:
        raise ValueError("interval_m must be > 0")
    if len(points) <= 2:
        return list(points)
    steps = consecutive_distances_m([(p.latitude, p.longitude) for p in points])
    sampled: List[TimedPoint] = [points[0]]
    accumulated = 0.0
    last_index = len(points) - 1
    for position in range(1, last_index):
        accumulated += float(steps[position - 1])
        if accumulated >= interval_m:
            sampled.append(points[position])
            accumulated = 0.0
    sampled.append(points[last_index])
    return sampled


def _ensure_stop_order(stops: Sequence[Stop]) -> None:
    for position in range(1, len(stops)):
        if stops[position].start < stops[position - 1].start:
            raise TimelineOrderError(
                f"Stops must be ordered by start time: {stops[position].stop_id} "
                f"starts before {stops[position - 1].stop_id}"
            )


def _window_points(
    points: Sequence[TimedPoint], stamps: Sequence[float], lo: float, hi: float
) -> Sequence[TimedPoint]:
    start = bisect_left(stamps, lo)
    end = bisect_right(stamps, hi)
    return points[start:end]


def _resolve_cities(
    geocoder: Optional[BatchGeocoder], coordinates: Sequence[LatLng]
) -> List[Optional[str]]:
    if geocoder is None or not coordinates:
        return [None] * len(coordinates)
    try:
        batch = geocoder.resolve_batch(coordinates)
    except Exception as exc:
        LOGGER.warning(
            "Route city lookup failed for %d samples; segments keep no cities: %s",
            len(coordinates),
            exc,
        )
        return [None] * len(coordinates)
    return [place.city or None for place in batch.results]


def build_segments(
    stops: Sequence[Stop],
    points: Sequence[TimedPoint],
    geocoder: Optional[BatchGeocoder] = None,
    sample_interval_m: float = ROUTE_SAMPLE_INTERVAL_METERS,
) -> List[Segment]:
    """Build one segment for every adjacent pair of stops.

    Each segment covers the gap ``[stop[i].end, stop[i + 1].start]``. Points
    recorded in that gap are distance sampled and the samples of every
    segment are reverse geocoded together in a single batch. The cities of
    the two endpoint stops are removed from each segment's city list.

    Raises:
        TimelineOrderError: when stops or points are out of order.
    """

    if len(stops) < 2:
        return []
    _ensure_stop_order(stops)
    ensure_chronological(points)

    stamps = [p.timestamp.timestamp() for p in points]
    samples_per_segment: List[Tuple[int, int]] = []
    coordinates: List[LatLng] = []
    for origin, destination in zip(stops, stops[1:]):
        in_window = [
            p
            for p in _window_points(
                points, stamps, origin.end.timestamp(), destination.start.timestamp()
            )
            if is_valid_coordinate(p.latitude, p.longitude)
        ]
        sampled = sample_by_distance(in_window, sample_interval_m) if in_window else []
        offset = len(coordinates)
        coordinates.extend((p.latitude, p.longitude) for p in sampled)
        samples_per_segment.append((offset, len(sampled)))

    cities = _resolve_cities(geocoder, coordinates)

    segments: List[Segment] = []
    for (origin, destination), (offset, count) in zip(
        zip(stops, stops[1:]), samples_per_segment
    ):
        found: Set[str] = {c for c in cities[offset : offset + count] if c}
        found.discard(origin.city or "")
        found.discard(destination.city or "")
        segments.append(
            Segment(
                from_stop_id=origin.stop_id,
                to_stop_id=destination.stop_id,
                start=origin.end,
                end=destination.start,
                distance_miles=haversine_miles(origin.centroid, destination.centroid),
                cities=tuple(sorted(found)),
            )
        )
    LOGGER.info(
        "Built %d segments from %d stops (%d route samples)",
        len(segments),
        len(stops),
        len(coordinates),
    )
    return segments


__all__ = ["BatchGeocoder", "build_segments", "sample_by_distance"]
