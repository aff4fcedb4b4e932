"""Greedy single-pass stop detection over chronological GPS points."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from .config import MAX_DISTANCE_METERS, MIN_DWELL_MINUTES
from .errors import TimelineOrderError
from .geometry import haversine_m, is_valid_coordinate
from .models import Stop

LOGGER = logging.getLogger(__name__)


class TimedPoint(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...

    @property
    def timestamp(self) -> datetime: ...


@dataclass(slots=True)
class _Cluster:
    """Running state of the cluster currently being grown."""

    start: datetime
    end: datetime
    lat_sum: float
    lng_sum: float
    count: int = 1
    max_member_distance_m: float = 0.0

    @classmethod
    def seed(cls, point: TimedPoint) -> "_Cluster":
        return cls(
            start=point.timestamp,
            end=point.timestamp,
            lat_sum=point.latitude,
            lng_sum=point.longitude,
        )

    @property
    def centroid_lat(self) -> float:
        return self.lat_sum / self.count

    @property
    def centroid_lng(self) -> float:
        return self.lng_sum / self.count

    def distance_to(self, point: TimedPoint) -> float:
        return haversine_m(
            self.centroid_lat, self.centroid_lng, point.latitude, point.longitude
        )

    def add(self, point: TimedPoint, distance_m: float) -> None:
        self.lat_sum += point.latitude
        self.lng_sum += point.longitude
        self.count += 1
        self.end = point.timestamp
        if distance_m > self.max_member_distance_m:
            self.max_member_distance_m = distance_m

    def dwell_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


@dataclass(slots=True)
class _StopCollector:
    min_dwell_minutes: float
    id_prefix: str
    stops: List[Stop] = field(default_factory=list)
    discarded: int = 0

    def close(self, cluster: Optional[_Cluster]) -> None:
        if cluster is None:
            return
        if cluster.dwell_minutes() < self.min_dwell_minutes:
            self.discarded += 1
            return
        self.stops.append(
            Stop(
                stop_id=f"{self.id_prefix}{len(self.stops) + 1}",
                start=cluster.start,
                end=cluster.end,
                latitude=cluster.centroid_lat,
                longitude=cluster.centroid_lng,
                point_count=cluster.count,
                max_member_distance_m=cluster.max_member_distance_m,
            )
        )


def ensure_chronological(points: Sequence[TimedPoint]) -> None:
    """Raise TimelineOrderError if ``points`` are not sorted by timestamp."""

    for position in range(1, len(points)):
        if points[position].timestamp < points[position - 1].timestamp:
            raise TimelineOrderError(
                "Points must be sorted by timestamp: "
                f"index {position} ({points[position].timestamp.isoformat()}) precedes "
                f"index {position - 1} ({points[position - 1].timestamp.isoformat()})"
            )


def detect_stops(
    points: Iterable[TimedPoint],
    min_dwell_minutes: float = MIN_DWELL_MINUTES,
    max_distance_m: float = MAX_DISTANCE_METERS,
    id_prefix: str = "stop_",
) -> List[Stop]:
    """Cluster chronological points into stops.

    Each point joins the current cluster when it lies within
    ``max_distance_m`` of the cluster's running centroid; otherwise the
    cluster is closed and a new one is seeded. Closed clusters spanning at
    least ``min_dwell_minutes`` become stops, shorter ones are discarded.

    Args:
        points: RawPoints or AssociatedPoints sorted ascending by timestamp.
        min_dwell_minutes: minimum cluster duration reported as a stop.
        max_distance_m: join radius around the running centroid.
        id_prefix: prefix for generated ``stop_id`` values.

    Raises:
        TimelineOrderError: when ``points`` are not in chronological order.
        ValueError: for a negative threshold.
    """

    if min_dwell_minutes < 0 or max_distance_m < 0:
        raise ValueError("min_dwell_minutes and max_distance_m must be >= 0")
    ordered = list(points)
    ensure_chronological(ordered)

    collector = _StopCollector(min_dwell_minutes=min_dwell_minutes, id_prefix=id_prefix)
    cluster: Optional[_Cluster] = None
    skipped = 0
    for point in ordered:
        if not is_valid_coordinate(point.latitude, point.longitude):
            skipped += 1
            continue
        if cluster is None:
            cluster = _Cluster.seed(point)
            continue
        distance = cluster.distance_to(point)
        if distance <= max_distance_m:
            cluster.add(point, distance)
            continue
        collector.close(cluster)
        cluster = _Cluster.seed(point)
    collector.close(cluster)

    LOGGER.info(
        "Detected %d stops from %d points (%d short clusters discarded, %d invalid points)",
        len(collector.stops),
        len(ordered),
        collector.discarded,
        skipped,
    )
    return collector.stops


__all__ = ["TimedPoint", "detect_stops", "ensure_chronological"]
