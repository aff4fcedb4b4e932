"""Dataclasses shared by the association, clustering and geocoding layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Literal, Optional, Tuple

ContainerKind = Literal["activity", "visit"]
LatLng = Tuple[float, float]

ROUTE_ACTIVITY = "route"
VISIT_ACTIVITY = "visit"


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True, slots=True)
class RawPoint:
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: Optional[float] = None
    activity: Optional[str] = None

    @property
    def timestamp_ms(self) -> int:
        return _epoch_ms(self.timestamp)


@dataclass(frozen=True, slots=True)
class TimeContainer:
    """An activity (movement) or visit (stationary) interval from an export."""

    container_id: str
    kind: ContainerKind
    start: datetime
    end: datetime
    location: Optional[LatLng] = None
    activity_type: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def start_ms(self) -> int:
        return _epoch_ms(self.start)

    @property
    def end_ms(self) -> int:
        return _epoch_ms(self.end)


@dataclass(frozen=True, slots=True)
class AssociatedPoint:
    point: RawPoint
    parent_id: Optional[str] = None
    parent_kind: Optional[ContainerKind] = None
    activity: str = ROUTE_ACTIVITY

    @property
    def latitude(self) -> float:
        return self.point.latitude

    @property
    def longitude(self) -> float:
        return self.point.longitude

    @property
    def timestamp(self) -> datetime:
        return self.point.timestamp

    @property
    def is_associated(self) -> bool:
        return self.parent_id is not None


@dataclass(frozen=True, slots=True)
class Place:
    """A reverse geocoding answer. All fields are optional."""

    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def empty(cls) -> "Place":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.city or self.state or self.country or self.address)


def is_resolved(place: Optional[Place | "CacheEntry"]) -> bool:
    """Return True when a place (or cache entry) counts as geocoded.

    Only a non-empty country qualifies. City-only or address-only answers are
    treated as unresolved so they get looked up again.
    """

    if place is None:
        return False
    return bool(place.country and place.country.strip())


@dataclass(slots=True)
class Stop:
    stop_id: str
    start: datetime
    end: datetime
    latitude: float
    longitude: float
    point_count: int
    max_member_distance_m: float = 0.0
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None

    @property
    def dwell(self) -> timedelta:
        return self.end - self.start

    @property
    def dwell_minutes(self) -> float:
        return self.dwell.total_seconds() / 60.0

    @property
    def centroid(self) -> LatLng:
        return self.latitude, self.longitude

    def apply_place(self, place: Place) -> None:
        """Copy geocoded fields onto the stop (empty places leave it untouched)."""

        if place.is_empty:
            return
        self.city = place.city
        self.state = place.state
        self.country = place.country
        self.address = place.address

    @property
    def place(self) -> Place:
        return Place(
            city=self.city, state=self.state, country=self.country, address=self.address
        )


@dataclass(frozen=True, slots=True)
class Segment:
    from_stop_id: str
    to_stop_id: str
    start: datetime
    end: datetime
    distance_miles: float
    cities: Tuple[str, ...] = ()

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class CacheEntry:
    lat_rounded: float
    lng_rounded: float
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    cached_at: Optional[datetime] = None

    @property
    def key(self) -> LatLng:
        return self.lat_rounded, self.lng_rounded

    def to_place(self) -> Place:
        return Place(
            city=self.city, state=self.state, country=self.country, address=self.address
        )


@dataclass(slots=True)
class CacheMetrics:
    total_requested: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    new_api_calls: int = 0
    invalid_coordinates: int = 0
    failed_lookups: int = 0
    cancelled: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalRequested": self.total_requested,
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "newApiCalls": self.new_api_calls,
            "invalidCoordinates": self.invalid_coordinates,
            "failedLookups": self.failed_lookups,
            "cancelled": self.cancelled,
        }


@dataclass(slots=True)
class BatchGeocodeResult:
    results: List[Place]
    metrics: CacheMetrics


@dataclass(frozen=True, slots=True)
class DailyCentroid:
    day: date
    latitude: float
    longitude: float
    point_count: int


@dataclass(frozen=True, slots=True)
class DailyPresence:
    day: date
    latitude: float
    longitude: float
    country: str
    state: Optional[str]
    sample_count: int
    provenance: str = "stop"


@dataclass(slots=True)
class LocationStats:
    total_days: int
    countries: List[Dict[str, Any]] = field(default_factory=list)
    us_states: List[Dict[str, Any]] = field(default_factory=list)
    start: Optional[date] = None
    end: Optional[date] = None


__all__ = [
    "AssociatedPoint",
    "BatchGeocodeResult",
    "CacheEntry",
    "CacheMetrics",
    "ContainerKind",
    "DailyCentroid",
    "DailyPresence",
    "LatLng",
    "LocationStats",
    "Place",
    "RawPoint",
    "ROUTE_ACTIVITY",
    "Segment",
    "Stop",
    "TimeContainer",
    "VISIT_ACTIVITY",
    "is_resolved",
]
