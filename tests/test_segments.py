"""Tests for distance sampling and trip segmentation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Sequence

import pytest

from location_timeline.errors import TimelineOrderError
from location_timeline.geometry import haversine_miles
from location_timeline.models import (
    BatchGeocodeResult,
    CacheMetrics,
    LatLng,
    Place,
    RawPoint,
    Stop,
)
from location_timeline.segments import build_segments, sample_by_distance

BASE = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def _t(minutes: float) -> datetime:
    return BASE + timedelta(minutes=minutes)


def _stop(sid: str, start: float, end: float, lat: float, lng: float, city=None) -> Stop:
    return Stop(
        stop_id=sid,
        start=_t(start),
        end=_t(end),
        latitude=lat,
        longitude=lng,
        point_count=5,
        city=city,
    )


class CityGeocoder:
    """Names a city after the whole-degree latitude band of each coordinate."""

    def __init__(self, names: dict[int, str]) -> None:
        self.names = names
        self.calls: List[Sequence[LatLng]] = []

    def resolve_batch(self, coordinates: Sequence[LatLng]) -> BatchGeocodeResult:
        self.calls.append(list(coordinates))
        results = [Place(city=self.names.get(int(lat)), country="X") for lat, _ in coordinates]
        metrics = CacheMetrics(total_requested=len(results))
        return BatchGeocodeResult(results=results, metrics=metrics)


def test_sample_by_distance_keeps_endpoints_and_spacing() -> None:
    # 0.1 degree of latitude is ~11.1 km; 10 steps cover ~111 km.
    path = [RawPoint(45.0 + i * 0.1, -120.0, _t(i)) for i in range(11)]
    sampled = sample_by_distance(path, interval_m=40_000)

    assert sampled[0] is path[0]
    assert sampled[-1] is path[-1]
    # Emitted after 4 steps (~44.5 km) twice, then the final point.
    assert [p.latitude for p in sampled] == pytest.approx([45.0, 45.4, 45.8, 46.0])


def test_sample_by_distance_short_paths() -> None:
    one = [RawPoint(45.0, -120.0, _t(0))]
    assert sample_by_distance(one) == one
    assert sample_by_distance([]) == []


def test_sample_by_distance_rejects_bad_interval() -> None:
    with pytest.raises(ValueError):
        sample_by_distance([], interval_m=0)


@pytest.mark.parametrize("count", [0, 1, 2, 5])
def test_segment_count_law(count: int) -> None:
    stops = [_stop(f"s{i}", i * 60, i * 60 + 30, 45.0 + i, -120.0) for i in range(count)]
    segments = build_segments(stops, [])
    assert len(segments) == max(0, count - 1)
    for i, segment in enumerate(segments):
        assert segment.from_stop_id == f"s{i}"
        assert segment.to_stop_id == f"s{i + 1}"
        assert segment.start == stops[i].end
        assert segment.end == stops[i + 1].start


def test_segment_distance_in_miles() -> None:
    a = _stop("a", 0, 30, 45.5152, -122.6784)
    b = _stop("b", 240, 300, 47.6062, -122.3321)
    (segment,) = build_segments([a, b], [])
    assert segment.distance_miles == pytest.approx(haversine_miles(a.centroid, b.centroid))
    assert segment.cities == ()


def test_intermediate_cities_exclude_endpoints_and_use_one_batch() -> None:
    a = _stop("a", 0, 30, 45.1, -120.0, city="Start")
    b = _stop("b", 200, 230, 48.1, -120.0, city="End")
    c = _stop("c", 400, 430, 49.5, -120.0, city="Far")
    route_ab = [RawPoint(45.0 + i * 0.1, -120.0, _t(40 + i * 5)) for i in range(31)]
    route_bc = [RawPoint(48.2, -120.0, _t(300)), RawPoint(49.4, -120.0, _t(350))]
    geocoder = CityGeocoder({45: "Start", 46: "Middleton", 47: "Lakeside", 48: "End", 49: "Far"})

    segments = build_segments([a, b, c], route_ab + route_bc, geocoder=geocoder)

    assert len(geocoder.calls) == 1
    assert segments[0].cities == ("Lakeside", "Middleton")
    assert segments[1].cities == ()


def test_points_outside_gap_are_ignored() -> None:
    a = _stop("a", 0, 30, 45.1, -120.0)
    b = _stop("b", 60, 90, 45.2, -120.0)
    dwell_point = RawPoint(46.5, -120.0, _t(10))
    geocoder = CityGeocoder({46: "Elsewhere"})
    (segment,) = build_segments([a, b], [dwell_point], geocoder=geocoder)
    assert segment.cities == ()
    assert geocoder.calls == []


def test_geocoder_failure_leaves_cities_empty(caplog: pytest.LogCaptureFixture) -> None:
    class Broken:
        def resolve_batch(self, coordinates):
            raise RuntimeError("provider down")

    a = _stop("a", 0, 30, 45.1, -120.0)
    b = _stop("b", 60, 90, 45.2, -120.0)
    (segment,) = build_segments([a, b], [RawPoint(45.15, -120.0, _t(45))], geocoder=Broken())
    assert segment.cities == ()
    assert "provider down" in caplog.text


def test_unordered_stops_raise() -> None:
    a = _stop("a", 60, 90, 45.1, -120.0)
    b = _stop("b", 0, 30, 45.2, -120.0)
    with pytest.raises(TimelineOrderError):
        build_segments([a, b], [])
