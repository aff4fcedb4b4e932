"""Distance and coordinate helpers used by clustering, segmentation and geocoding."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from .models import LatLng

_EARTH_RADIUS_M = 6_371_000.0
METERS_PER_MILE = 1_609.344


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance in metres between two coordinates."""

    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2 - lon1)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lon = sin(delta_lon / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lon**2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return _EARTH_RADIUS_M * c


def haversine_miles(first: LatLng, second: LatLng) -> float:
    return haversine_m(first[0], first[1], second[0], second[1]) / METERS_PER_MILE


def consecutive_distances_m(points: Sequence[LatLng]) -> NDArray[np.float64]:
    """Return the haversine distance between each pair of consecutive points.

    The result has ``len(points) - 1`` entries (empty for fewer than 2 points).
    """

    if len(points) < 2:
        return np.empty(0, dtype=float)
    coords = np.radians(np.asarray(points, dtype=float))
    lat = coords[:, 0]
    lon = coords[:, 1]
    d_lat = np.diff(lat)
    d_lon = np.diff(lon)
    a = np.sin(d_lat / 2.0) ** 2 + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(
        d_lon / 2.0
    ) ** 2
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return _EARTH_RADIUS_M * c


def round_coordinate(value: float, precision: int) -> float:
    """Round half away from zero to ``precision`` decimals (never banker's rounding)."""

    factor = 10**precision
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value) if rounded else 0.0


def bucket_key(lat: float, lng: float, precision: int) -> LatLng:
    return round_coordinate(lat, precision), round_coordinate(lng, precision)


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """Reject NaN/inf, the (0, 0) null island and out-of-range values."""

    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return False
    if lat_f == 0.0 and lng_f == 0.0:
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


__all__ = [
    "METERS_PER_MILE",
    "bucket_key",
    "consecutive_distances_m",
    "haversine_m",
    "haversine_miles",
    "is_valid_coordinate",
    "round_coordinate",
]
