from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List

import pytest

from location_timeline.errors import StorageError
from location_timeline.geocoding.cache import InMemoryGeocodeCache
from location_timeline.geocoding.pacing import ChainResult
from location_timeline.geocoding.service import GeocodingService
from location_timeline.models import Place, RawPoint, Stop, TimeContainer
from location_timeline.services import (
    TimelineService,
    TimelineServiceConfig,
    TimelineSettings,
)
from location_timeline.storage import InMemoryTimelineStore

BASE = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def _t(minutes: int) -> datetime:
    return BASE + timedelta(minutes=minutes)


class BandChain:
    """Names places by latitude band around the Portland to Salem corridor."""

    def __init__(self, empty: bool = False, dead_above: float = 90.0) -> None:
        self.empty = empty
        self.dead_above = dead_above
        self.calls: List[tuple] = []

    def resolve(self, lat: float, lng: float) -> ChainResult:
        self.calls.append((lat, lng))
        if self.empty or lat > self.dead_above:
            place = Place.empty()
        elif lat > 45.4:
            place = Place(city="Portland", state="Oregon", country="United States")
        elif lat > 45.0:
            place = Place(city="Woodburn", state="Oregon", country="United States")
        else:
            place = Place(city="Salem", state="Oregon", country="United States")
        return ChainResult(place=place, provider="fake", attempts=1)


def _trip_points() -> List[RawPoint]:
    home = [RawPoint(45.5152 + i * 0.0001, -122.6784, _t(i * 5)) for i in range(7)]
    travel = [RawPoint(45.3, -122.8, _t(40)), RawPoint(45.1, -122.9, _t(50))]
    salem = [RawPoint(44.9429 + i * 0.0001, -123.0351, _t(90 + i * 5)) for i in range(7)]
    return home + travel + salem


def _trip_containers() -> List[TimeContainer]:
    return [
        TimeContainer("visit_0", "visit", _t(0), _t(30), location=(45.5155, -122.6784)),
        TimeContainer("activity_1", "activity", _t(30), _t(90), activity_type="in_vehicle"),
        TimeContainer("visit_2", "visit", _t(90), _t(120)),
    ]


def _service(store=None, chain=None, **settings) -> TimelineService:
    geocoder = None
    if chain is not None:
        geocoder = GeocodingService(cache=store if store is not None else InMemoryGeocodeCache(), chain=chain)
    return TimelineService(
        TimelineServiceConfig(
            settings=TimelineSettings(**settings),
            geocoder=geocoder,
            store=store,
        )
    )


def test_build_timeline_end_to_end() -> None:
    store = InMemoryTimelineStore()
    chain = BandChain()
    service = _service(store, chain)

    result = service.build_timeline(_trip_containers(), _trip_points(), run_id="run1")

    assert [s.stop_id for s in result.stops] == ["run1:stop_1", "run1:stop_2"]
    home, salem = result.stops
    assert home.city == "Portland"
    assert salem.city == "Salem"
    assert home.dwell_minutes == pytest.approx(30)

    (segment,) = result.segments
    assert segment.from_stop_id == "run1:stop_1"
    assert segment.start == home.end
    assert segment.end == salem.start
    assert segment.cities == ("Woodburn",)

    # The marked home visit collapses to one point; the unmarked Salem visit keeps its 7.
    (centroid,) = result.daily_centroids
    assert centroid.point_count == 1 + 2 + 7

    (presence,) = result.daily_presence
    assert (presence.state, presence.country) == ("Oregon", "United States")

    assert result.geocode_metrics.total_requested == 2
    assert result.persisted is True
    assert len(store.stops_in_range(_t(0), _t(120))) == 2
    assert len(store.segments_in_range(_t(0), _t(120))) == 1
    # Stop buckets and the sampled route bucket end up in the shared cache.
    cached = store.bulk_get([(45.52, -122.68), (44.94, -123.04), (45.1, -122.9), (45.3, -122.8)])
    assert sorted(cached) == [(44.94, -123.04), (45.1, -122.9), (45.52, -122.68)]


def test_points_are_associated_with_containers() -> None:
    result = _service().build_timeline(_trip_containers(), _trip_points())
    by_time = {p.timestamp: p for p in result.points}
    assert by_time[_t(0)].parent_id == "visit_0"
    assert by_time[_t(40)].parent_id == "activity_1"
    assert by_time[_t(40)].activity == "in_vehicle"


def test_without_geocoder_or_store() -> None:
    result = _service().build_timeline(_trip_containers(), _trip_points())
    assert len(result.stops) == 2
    assert all(stop.country is None for stop in result.stops)
    assert result.geocode_metrics is None
    assert result.daily_presence == []
    assert result.persisted is False


def test_settings_are_applied() -> None:
    result = _service(min_dwell_minutes=45).build_timeline(_trip_containers(), _trip_points())
    assert result.stops == []
    assert result.segments == []


def test_unsorted_points_are_sorted_first() -> None:
    points = list(reversed(_trip_points()))
    result = _service().build_timeline(_trip_containers(), points)
    assert len(result.stops) == 2


def test_persistence_failure_is_reported() -> None:
    class FailingStore(InMemoryTimelineStore):
        def save_timeline(self, stops, segments):
            raise StorageError("read-only database")

    result = _service(FailingStore()).build_timeline(_trip_containers(), _trip_points())
    assert result.persisted is False
    assert len(result.stops) == 2


def test_rejected_segments_leave_no_stops_behind() -> None:
    class NoSegmentsStore(InMemoryTimelineStore):
        def save_timeline(self, stops, segments):
            if segments:
                raise StorageError("segment table is locked")
            super().save_timeline(stops, segments)

    store = NoSegmentsStore()
    result = _service(store).build_timeline(_trip_containers(), _trip_points())

    assert result.persisted is False
    assert store.stops_in_range(_t(0), _t(120)) == []


def test_process_export_with_day_range() -> None:
    data = {
        "timelineObjects": [
            {
                "activitySegment": {
                    "duration": {
                        "startTimestamp": "2024-06-01T08:00:00Z",
                        "endTimestamp": "2024-06-01T09:00:00Z",
                    },
                    "activityType": "WALKING",
                    "simplifiedRawPath": {
                        "points": [
                            {
                                "latE7": 455152000 + i * 1000,
                                "lngE7": -1226784000,
                                "timestamp": _t(i * 5).isoformat(),
                            }
                            for i in range(6)
                        ]
                    },
                }
            }
        ]
    }
    service = _service()

    result = service.process_export(data, date(2024, 6, 1), date(2024, 6, 1))
    assert len(result.points) == 6
    assert all(p.activity == "walking" for p in result.points)
    assert len(result.stops) == 1

    outside = service.process_export(data, date(2024, 6, 2), date(2024, 6, 3))
    assert outside.points == []
    assert outside.stops == []


def _pending_stop(sid: str, minutes: int, lat: float) -> Stop:
    return Stop(sid, _t(minutes), _t(minutes + 30), lat, -122.7, point_count=3)


def test_resolve_unresolved_stops_in_batches() -> None:
    store = InMemoryTimelineStore()
    store.bulk_insert_stops(
        [_pending_stop(f"s{i}", i * 60, 45.5 - i * 0.2) for i in range(5)]
    )
    chain = BandChain()
    service = _service(store, chain, unresolved_batch_limit=2)

    assert service.resolve_unresolved_stops() == 5
    assert store.count_unresolved_stops() == 0


def test_resolve_unresolved_stops_respects_max_batches() -> None:
    store = InMemoryTimelineStore()
    store.bulk_insert_stops([_pending_stop(f"s{i}", i * 60, 45.5) for i in range(5)])
    service = _service(store, BandChain(), unresolved_batch_limit=2)

    assert service.resolve_unresolved_stops(max_batches=1) == 2
    assert store.count_unresolved_stops() == 3


def test_resolve_unresolved_stops_tries_each_stop_once_when_nothing_resolves() -> None:
    store = InMemoryTimelineStore()
    store.bulk_insert_stops([_pending_stop("s0", 0, 45.5), _pending_stop("s1", 60, 45.6)])
    chain = BandChain(empty=True)
    service = _service(store, chain, unresolved_batch_limit=1)

    assert service.resolve_unresolved_stops() == 0
    assert len(chain.calls) == 2
    assert store.count_unresolved_stops() == 2


def test_resolve_unresolved_stops_needs_store_and_geocoder() -> None:
    assert _service().resolve_unresolved_stops() == 0


def test_unresolvable_head_does_not_block_later_stops() -> None:
    store = InMemoryTimelineStore()
    store.bulk_insert_stops(
        [
            _pending_stop("s0", 0, 45.5),
            _pending_stop("s1", 60, 45.6),
            _pending_stop("s2", 120, 44.9),
        ]
    )
    chain = BandChain(dead_above=45.45)
    service = _service(store, chain, unresolved_batch_limit=2)

    assert service.resolve_unresolved_stops() == 1
    assert len(chain.calls) == 3
    (resolved,) = store.stops_in_range(_t(120), _t(120))
    assert resolved.city == "Salem"
    assert store.count_unresolved_stops() == 2


def test_failed_stop_update_does_not_abort_resolution(caplog: pytest.LogCaptureFixture) -> None:
    class FlakyStore(InMemoryTimelineStore):
        def update_stop_place(self, stop_id, place):
            if stop_id == "s0":
                raise StorageError("locked")
            return super().update_stop_place(stop_id, place)

    store = FlakyStore()
    store.bulk_insert_stops(
        [_pending_stop(f"s{i}", i * 60, 45.5 - i * 0.2) for i in range(3)]
    )
    service = _service(store, BandChain(), unresolved_batch_limit=2)

    assert service.resolve_unresolved_stops() == 2
    assert [s.stop_id for s in store.list_unresolved_stops(10)] == ["s0"]
    assert "locked" in caplog.text


def test_failed_queue_listing_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    class BrokenQueueStore(InMemoryTimelineStore):
        def list_unresolved_stops(self, limit, after=None):
            raise StorageError("disk I/O error")

    store = BrokenQueueStore()
    store.bulk_insert_stops([_pending_stop("s0", 0, 45.5)])

    assert _service(store, BandChain()).resolve_unresolved_stops() == 0
    assert "disk I/O error" in caplog.text
