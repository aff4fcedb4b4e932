"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable fixtures for the timeline,
stop and geocoding tests.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from typing import Callable, List

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from location_timeline.models import RawPoint


def at(hour: int, minute: int = 0, day: int = 1, month: int = 6, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep advances time instead of blocking."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def make_point() -> Callable[..., RawPoint]:
    def _make(lat: float, lng: float, hour: int, minute: int = 0, day: int = 1) -> RawPoint:
        return RawPoint(latitude=lat, longitude=lng, timestamp=at(hour, minute, day))

    return _make


@pytest.fixture
def portland_points() -> List[RawPoint]:
    return [
        RawPoint(45.5152, -122.6784, at(10, 0)),
        RawPoint(45.5155, -122.6780, at(10, 5)),
        RawPoint(45.5160, -122.6790, at(10, 20)),
    ]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
