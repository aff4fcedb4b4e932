"""Normalise Google location-history JSON into containers and path groups.

Two shapes are recognised:

* Semantic Location History: ``{"timelineObjects": [{"activitySegment": ...},
  {"placeVisit": ...}]}`` where activity segments carry their GPS path in
  ``simplifiedRawPath``, ``rawPath`` or ``waypointPath``.
* The newer on-device timeline: a flat list of objects with ``startTime`` /
  ``endTime`` and one of ``activity``, ``visit`` or ``timelinePath``.

Anything else raises :class:`ExportFormatError`. Individual malformed records
are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..errors import ExportFormatError
from ..geometry import is_valid_coordinate
from ..models import LatLng, RawPoint, TimeContainer
from ..utils import parse_timestamp
from .association import PathGroup

LOGGER = logging.getLogger(__name__)

# Explicit point timestamps before this are treated as garbage.
_MIN_VALID_TIMESTAMP = datetime(2000, 1, 1, tzinfo=timezone.utc)

_PATH_KEYS: Tuple[Tuple[str, str], ...] = (
    ("simplifiedRawPath", "points"),
    ("rawPath", "points"),
    ("waypointPath", "waypoints"),
)


@dataclass(slots=True)
class ExportData:
    containers: List[TimeContainer] = field(default_factory=list)
    path_groups: List[PathGroup] = field(default_factory=list)

    @property
    def points(self) -> List[RawPoint]:
        """All path points, sorted by timestamp."""

        flat = [p for group in self.path_groups for p in group.points]
        flat.sort(key=lambda p: p.timestamp)
        return flat


def _timeline_elements(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        objects = data.get("timelineObjects")
        if isinstance(objects, list):
            return objects
        segments = data.get("semanticSegments")
        if isinstance(segments, list):
            return segments
    raise ExportFormatError(
        "Unrecognised export: expected a list or an object with timelineObjects"
    )


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _window(record: Mapping[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    duration = record.get("duration") if isinstance(record.get("duration"), Mapping) else {}
    start_raw = _first(duration, "startTimestampMs", "startTimestamp") or _first(
        record, "startTime", "startTimestamp"
    )
    end_raw = _first(duration, "endTimestampMs", "endTimestamp") or _first(
        record, "endTime", "endTimestamp"
    )
    return parse_timestamp(start_raw), parse_timestamp(end_raw)


def _e7_pair(mapping: Any, lat_key: str, lng_key: str) -> Optional[LatLng]:
    if not isinstance(mapping, Mapping):
        return None
    lat = mapping.get(lat_key)
    lng = mapping.get(lng_key)
    if lat is None or lng is None:
        return None
    try:
        return float(lat) / 1e7, float(lng) / 1e7
    except (TypeError, ValueError):
        return None


def _geo_string(value: Any) -> Optional[LatLng]:
    if not isinstance(value, str) or not value.startswith("geo:"):
        return None
    parts = value[4:].split(",")
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return None


def parse_coordinates(point: Any) -> Optional[LatLng]:
    """Extract (lat, lng) from any of the coordinate encodings seen in exports."""

    if isinstance(point, str):
        return _geo_string(point)
    if not isinstance(point, Mapping):
        return None
    for lat_key, lng_key in (("latE7", "lngE7"), ("latitudeE7", "longitudeE7")):
        pair = _e7_pair(point, lat_key, lng_key)
        if pair is not None:
            return pair
    return _geo_string(point.get("point")) or _geo_string(point.get("latLng"))


def _visit_location(visit: Mapping[str, Any]) -> Optional[LatLng]:
    location = visit.get("location")
    pair = _e7_pair(location, "latitudeE7", "longitudeE7")
    if pair is not None:
        return pair
    top = visit.get("topCandidate")
    if isinstance(top, Mapping):
        return _geo_string(top.get("placeLocation"))
    return None


def _looks_like_iso(value: str) -> bool:
    return "-" in value or "T" in value or "Z" in value


def _explicit_timestamp(value: Any, parent_start: datetime) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is not None and parsed > _MIN_VALID_TIMESTAMP:
        return parsed
    return parent_start


def _point_timestamp(
    point: Any,
    position: int,
    total: int,
    parent_start: datetime,
    parent_end: datetime,
) -> datetime:
    """Resolve a path point's timestamp, falling back to interpolation."""

    if isinstance(point, Mapping):
        if point.get("timestampMs"):
            return _explicit_timestamp(point["timestampMs"], parent_start)
        if point.get("timestamp"):
            return _explicit_timestamp(point["timestamp"], parent_start)
        offset = point.get("durationMinutesOffsetFromStart")
        if offset is not None:
            try:
                return parent_start + timedelta(minutes=float(offset))
            except (TypeError, ValueError):
                return parent_start
        time_value = point.get("time")
        if time_value is not None:
            if isinstance(time_value, str) and _looks_like_iso(time_value):
                return _explicit_timestamp(time_value, parent_start)
            try:
                return parent_start + timedelta(minutes=int(float(str(time_value))))
            except (TypeError, ValueError):
                return parent_start
    progress = position / (total - 1) if total > 1 else 0.0
    return parent_start + (parent_end - parent_start) * progress


def normalize_path_points(
    raw_points: Sequence[Any],
    parent_start: datetime,
    parent_end: datetime,
    activity: Optional[str] = None,
) -> List[RawPoint]:
    """Convert raw export path entries into RawPoints, skipping invalid ones."""

    normalised: List[RawPoint] = []
    total = len(raw_points)
    for position, point in enumerate(raw_points):
        coords = parse_coordinates(point)
        if coords is None or not is_valid_coordinate(*coords):
            continue
        timestamp = _point_timestamp(point, position, total, parent_start, parent_end)
        accuracy = None
        if isinstance(point, Mapping):
            accuracy_raw = point.get("accuracyMeters")
            if accuracy_raw is not None:
                try:
                    accuracy = float(accuracy_raw)
                except (TypeError, ValueError):
                    accuracy = None
        normalised.append(
            RawPoint(
                latitude=coords[0],
                longitude=coords[1],
                timestamp=timestamp,
                accuracy_m=accuracy,
                activity=activity,
            )
        )
    return normalised


def _activity_type(record: Mapping[str, Any]) -> Optional[str]:
    value = record.get("activityType")
    if isinstance(value, str) and value:
        return value.lower()
    top = record.get("topCandidate")
    if isinstance(top, Mapping):
        candidate = top.get("type")
        if isinstance(candidate, str) and candidate:
            return candidate.lower()
    return None


def _activity_path(record: Mapping[str, Any]) -> Sequence[Any]:
    for key, inner in _PATH_KEYS:
        holder = record.get(key)
        if isinstance(holder, Mapping):
            points = holder.get(inner)
            if isinstance(points, list) and points:
                return points
    return []


def _read_semantic(element: Mapping[str, Any], position: int, out: ExportData) -> None:
    activity = element.get("activitySegment")
    if isinstance(activity, Mapping):
        start, end = _window(activity)
        if start is None or end is None:
            LOGGER.debug("Skipping activitySegment %d: missing timestamps", position)
        else:
            container_id = f"activity_{position}"
            kind_label = _activity_type(activity)
            out.containers.append(
                TimeContainer(
                    container_id=container_id,
                    kind="activity",
                    start=start,
                    end=end,
                    activity_type=kind_label,
                    raw=activity,
                )
            )
            raw_path = _activity_path(activity)
            if raw_path:
                out.path_groups.append(
                    PathGroup(
                        group_id=container_id,
                        start=start,
                        end=end,
                        points=tuple(
                            normalize_path_points(raw_path, start, end, kind_label)
                        ),
                    )
                )

    visit = element.get("placeVisit")
    if isinstance(visit, Mapping):
        start, end = _window(visit)
        if start is None or end is None:
            LOGGER.debug("Skipping placeVisit %d: missing timestamps", position)
        else:
            out.containers.append(
                TimeContainer(
                    container_id=f"visit_{position}",
                    kind="visit",
                    start=start,
                    end=end,
                    location=_visit_location(visit),
                    raw=visit,
                )
            )


def _read_flat(element: Mapping[str, Any], position: int, out: ExportData) -> None:
    start, end = _window(element)
    if start is None or end is None:
        LOGGER.debug("Skipping timeline element %d: missing timestamps", position)
        return
    activity = element.get("activity")
    if isinstance(activity, Mapping):
        out.containers.append(
            TimeContainer(
                container_id=f"activity_{position}",
                kind="activity",
                start=start,
                end=end,
                activity_type=_activity_type(activity),
                raw=activity,
            )
        )
    visit = element.get("visit")
    if isinstance(visit, Mapping):
        out.containers.append(
            TimeContainer(
                container_id=f"visit_{position}",
                kind="visit",
                start=start,
                end=end,
                location=_visit_location(visit),
                raw=visit,
            )
        )
    path = element.get("timelinePath")
    if isinstance(path, list) and path:
        out.path_groups.append(
            PathGroup(
                group_id=f"path_{position}",
                start=start,
                end=end,
                points=tuple(normalize_path_points(path, start, end)),
            )
        )


def read_export(data: Any) -> ExportData:
    """Read a parsed export (``json.load`` output) into containers and paths."""

    elements = _timeline_elements(data)
    out = ExportData()
    for position, element in enumerate(elements):
        if not isinstance(element, Mapping):
            continue
        if "activitySegment" in element or "placeVisit" in element:
            _read_semantic(element, position, out)
        else:
            _read_flat(element, position, out)
        if position and position % 10000 == 0:
            LOGGER.info("Read %d timeline elements ...", position)
    LOGGER.info(
        "Read export: %d containers, %d path groups, %d points",
        len(out.containers),
        len(out.path_groups),
        sum(len(g.points) for g in out.path_groups),
    )
    return out


__all__ = [
    "ExportData",
    "normalize_path_points",
    "parse_coordinates",
    "read_export",
]
