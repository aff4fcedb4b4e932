"""Behaviour shared by the in-memory and SQLAlchemy timeline stores."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from location_timeline.errors import StorageError
from location_timeline.models import CacheEntry, Place, Segment, Stop
from location_timeline.storage import InMemoryTimelineStore, SqlTimelineStore
from location_timeline.storage.base import queue_key
from location_timeline.storage.sql import CacheEntryRow

FIXED_NOW = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
BASE = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return FIXED_NOW


def _stop(sid: str, hours: float, country=None, state=None) -> Stop:
    start = BASE + timedelta(hours=hours)
    return Stop(
        stop_id=sid,
        start=start,
        end=start + timedelta(minutes=30),
        latitude=45.5 + hours / 100,
        longitude=-122.6,
        point_count=4,
        max_member_distance_m=42.5,
        state=state,
        country=country,
    )


def _segment(a: str, b: str, hours: float) -> Segment:
    start = BASE + timedelta(hours=hours)
    return Segment(
        from_stop_id=a,
        to_stop_id=b,
        start=start,
        end=start + timedelta(hours=1),
        distance_miles=12.5,
        cities=("Beaverton", "Hillsboro"),
    )


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryTimelineStore(clock=_clock)
    return SqlTimelineStore("sqlite://", clock=_clock)


def test_cache_upsert_and_bulk_get(store) -> None:
    stamped = store.upsert(CacheEntry(45.52, -122.68, city="Portland", country="United States"))
    assert stamped.cached_at == FIXED_NOW

    found = store.bulk_get([(45.52, -122.68), (1.0, 1.0)])
    assert list(found) == [(45.52, -122.68)]
    entry = found[(45.52, -122.68)]
    assert entry.city == "Portland"
    assert entry.cached_at == FIXED_NOW


def test_cache_upsert_replaces_existing_bucket(store) -> None:
    store.upsert_cache_entry(CacheEntry(10.0, 20.0, city="Old"))
    store.upsert_cache_entry(CacheEntry(10.0, 20.0, city="New", country="Testland"))
    entry = store.bulk_get([(10.0, 20.0)])[(10.0, 20.0)]
    assert entry.city == "New"
    assert entry.country == "Testland"


def test_bulk_get_many_keys(store) -> None:
    keys = [(float(i), float(i)) for i in range(1, 451)]
    for lat, lng in keys[::3]:
        store.upsert(CacheEntry(lat, lng, country="X"))
    assert len(store.bulk_get(keys)) == 150


def test_stops_round_trip_with_utc_datetimes(store) -> None:
    stops = [_stop("s1", 0, country="United States"), _stop("s2", 5)]
    assert store.bulk_insert_stops(stops) == 2

    loaded = store.stops_in_range(BASE, BASE + timedelta(days=1))
    assert [s.stop_id for s in loaded] == ["s1", "s2"]
    assert loaded[0].start == stops[0].start
    assert loaded[0].start.tzinfo is not None
    assert loaded[0].max_member_distance_m == pytest.approx(42.5)
    assert loaded[0].country == "United States"


def test_stop_range_bounds_are_inclusive_on_start(store) -> None:
    store.bulk_insert_stops([_stop("a", 0), _stop("b", 2), _stop("c", 4)])
    hits = store.stops_in_range(BASE + timedelta(hours=2), BASE + timedelta(hours=4))
    assert [s.stop_id for s in hits] == ["b", "c"]


def test_naive_range_bounds_are_utc(store) -> None:
    store.bulk_insert_stops([_stop("a", 1)])
    naive_start = datetime(2024, 6, 1, 9, 0)
    assert [s.stop_id for s in store.stops_in_range(naive_start, naive_start)] == ["a"]


def test_duplicate_stop_id_raises(store) -> None:
    store.bulk_insert_stops([_stop("dup", 0)])
    with pytest.raises(StorageError):
        store.bulk_insert_stops([_stop("dup", 1)])


def test_segments_round_trip(store) -> None:
    store.bulk_insert_segments([_segment("b", "c", 3), _segment("a", "b", 1)])
    loaded = store.segments_in_range(BASE, BASE + timedelta(hours=3))
    assert [(s.from_stop_id, s.to_stop_id) for s in loaded] == [("a", "b"), ("b", "c")]
    assert loaded[0].cities == ("Beaverton", "Hillsboro")
    assert loaded[0].distance_miles == pytest.approx(12.5)
    assert store.segments_in_range(BASE, BASE) == []


def test_unresolved_stop_queue(store) -> None:
    store.bulk_insert_stops(
        [
            _stop("late", 6),
            _stop("done", 1, country="Canada"),
            _stop("blank", 3, country="  "),
            _stop("early", 2),
        ]
    )
    assert store.count_unresolved_stops() == 3
    assert [s.stop_id for s in store.list_unresolved_stops(2)] == ["early", "blank"]

    salem = Place(city="Salem", state="Oregon", country="United States")
    assert store.update_stop_place("early", salem)
    assert store.count_unresolved_stops() == 2
    (early,) = store.stops_in_range(BASE + timedelta(hours=2), BASE + timedelta(hours=2))
    assert early.city == "Salem"
    assert early.state == "Oregon"


def test_update_stop_place_rejects_unknown_or_empty(store) -> None:
    store.bulk_insert_stops([_stop("s", 0)])
    assert store.update_stop_place("missing", Place(country="Canada")) is False
    assert store.update_stop_place("s", Place.empty()) is False
    assert store.count_unresolved_stops() == 1


def test_memory_store_returns_copies() -> None:
    store = InMemoryTimelineStore()
    store.bulk_insert_stops([_stop("s", 0)])
    (loaded,) = store.stops_in_range(BASE, BASE)
    loaded.country = "Mutated"
    assert store.count_unresolved_stops() == 1


def test_sql_store_wraps_bad_url() -> None:
    with pytest.raises(StorageError):
        SqlTimelineStore("sqlite:////nonexistent-dir/does/not/exist.db")


def test_unresolved_queue_pages_after_cursor(store) -> None:
    store.bulk_insert_stops([_stop("b", 2), _stop("d", 3), _stop("a", 2), _stop("c", 1)])

    first = store.list_unresolved_stops(2)
    assert [s.stop_id for s in first] == ["c", "a"]
    second = store.list_unresolved_stops(2, after=queue_key(first[-1]))
    assert [s.stop_id for s in second] == ["b", "d"]
    assert store.list_unresolved_stops(2, after=queue_key(second[-1])) == []


def test_save_timeline_is_all_or_nothing(store) -> None:
    store.bulk_insert_stops([_stop("dup", 0)])

    with pytest.raises(StorageError):
        store.save_timeline([_stop("new", 1), _stop("dup", 2)], [_segment("new", "dup", 1)])

    everything = (BASE, BASE + timedelta(days=1))
    assert [s.stop_id for s in store.stops_in_range(*everything)] == ["dup"]
    assert store.segments_in_range(*everything) == []


def test_sql_rejected_segment_rolls_back_stops() -> None:
    store = SqlTimelineStore("sqlite://", clock=_clock)
    broken = replace(_segment("a", "b", 0), from_stop_id=None)

    with pytest.raises(StorageError):
        store.save_timeline([_stop("a", 0), _stop("b", 2)], [broken])

    assert store.stops_in_range(BASE, BASE + timedelta(days=1)) == []


def test_sql_concurrent_cache_insert_becomes_update(
    tmp_path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger="location_timeline.storage.sql")
    url = f"sqlite:///{tmp_path / 'cache.db'}"
    earlier = FIXED_NOW - timedelta(days=1)

    class RacedStore(SqlTimelineStore):
        raced = False

        def _apply_entry(self, session, entry, stamp):
            if self.raced:
                return super()._apply_entry(session, entry, stamp)
            self.raced = True
            # Another writer commits the bucket after this one found it missing.
            rival = SqlTimelineStore(engine=self.engine, clock=lambda: earlier, create_schema=False)
            rival.upsert_cache_entry(CacheEntry(entry.lat_rounded, entry.lng_rounded, city="Rival"))
            session.add(
                CacheEntryRow(
                    lat_rounded=entry.lat_rounded,
                    lng_rounded=entry.lng_rounded,
                    city=entry.city,
                    cached_at=stamp,
                )
            )

    store = RacedStore(url, clock=_clock)
    stamped = store.upsert_cache_entry(
        CacheEntry(45.52, -122.68, city="Portland", country="United States")
    )

    assert stamped.cached_at == FIXED_NOW
    assert "retrying as update" in caplog.text
    with Session(store.engine) as session:
        assert session.execute(select(func.count()).select_from(CacheEntryRow)).scalar_one() == 1
    entry = store.bulk_get([(45.52, -122.68)])[(45.52, -122.68)]
    assert entry.city == "Portland"
    assert entry.country == "United States"
    assert entry.cached_at == FIXED_NOW
