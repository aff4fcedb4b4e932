"""Assign GPS points to the activity or visit that owns them in time."""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

from ..geometry import is_valid_coordinate
from ..models import (
    ROUTE_ACTIVITY,
    VISIT_ACTIVITY,
    AssociatedPoint,
    LatLng,
    RawPoint,
    TimeContainer,
)
from ..utils import day_bounds
from .index import ContainerIndex, find_owning_parent

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PathGroup:
    """A run of GPS points recorded together with its own time window."""

    group_id: str
    start: datetime
    end: datetime
    points: Sequence[RawPoint] = field(default_factory=tuple)


def _associate(point: RawPoint, parent: Optional[TimeContainer]) -> AssociatedPoint:
    if parent is None:
        return AssociatedPoint(point=point, activity=ROUTE_ACTIVITY)
    label = point.activity or parent.activity_type or parent.kind
    return AssociatedPoint(
        point=point,
        parent_id=parent.container_id,
        parent_kind=parent.kind,
        activity=label,
    )


def associate_point(point: RawPoint, index: ContainerIndex) -> AssociatedPoint:
    ts = point.timestamp_ms
    return _associate(point, find_owning_parent(index, ts, ts))


def associate_points(
    points: Iterable[RawPoint], index: ContainerIndex
) -> List[AssociatedPoint]:
    """Associate every point with its owning container, preserving input order.

    Points whose timestamp lies in no container are kept as unassociated
    route points.
    """

    associated: List[AssociatedPoint] = []
    unassociated = 0
    for point in points:
        item = associate_point(point, index)
        if not item.is_associated:
            unassociated += 1
        associated.append(item)
    LOGGER.info(
        "Associated %d/%d points with a parent container",
        len(associated) - unassociated,
        len(associated),
    )
    return associated


def _marker_point(visit: TimeContainer, location: LatLng) -> AssociatedPoint:
    lat, lng = location
    marker = RawPoint(
        latitude=lat,
        longitude=lng,
        timestamp=visit.start,
        activity=VISIT_ACTIVITY,
    )
    return AssociatedPoint(
        point=marker,
        parent_id=visit.container_id,
        parent_kind="visit",
        activity=VISIT_ACTIVITY,
    )


def suppress_points_in_visits(
    points: Sequence[AssociatedPoint], index: ContainerIndex
) -> List[AssociatedPoint]:
    """Collapse raw points inside a marked visit into the visit's place marker.

    A visit with a known location that overlaps the time span of ``points``
    contributes exactly one point (its place marker at the visit start). Raw
    points whose timestamp falls inside such a visit are dropped. Visits
    without a location leave their points alone. The result is sorted by
    timestamp.
    """

    marked: List[TimeContainer] = []
    locations: List[LatLng] = []
    for visit in index.visits:
        if visit.location is not None and is_valid_coordinate(*visit.location):
            marked.append(visit)
            locations.append(visit.location)
    if not marked or not points:
        return sorted(points, key=lambda p: p.timestamp)
    starts = [v.start_ms for v in marked]
    max_span_ms = max(v.end_ms - v.start_ms for v in marked)

    def inside_marked_visit(ts_ms: int) -> bool:
        pos = bisect_right(starts, ts_ms)
        # Marked visits can overlap each other, so look back past short ones.
        while pos > 0:
            pos -= 1
            visit = marked[pos]
            if visit.start_ms <= ts_ms <= visit.end_ms:
                return True
            if ts_ms - visit.start_ms > max_span_ms:
                return False
        return False

    kept = [p for p in points if not inside_marked_visit(p.point.timestamp_ms)]
    dropped = len(points) - len(kept)
    span_start = min(p.point.timestamp_ms for p in points)
    span_end = max(p.point.timestamp_ms for p in points)
    kept.extend(
        _marker_point(visit, location)
        for visit, location in zip(marked, locations)
        if visit.end_ms >= span_start and visit.start_ms <= span_end
    )
    kept.sort(key=lambda p: p.timestamp)
    LOGGER.debug(
        "Suppressed %d raw points inside %d marked visits", dropped, len(marked)
    )
    return kept


def associate_path_groups(
    groups: Iterable[PathGroup],
    index: ContainerIndex,
    start_day: Optional[date] = None,
    end_day: Optional[date] = None,
) -> List[AssociatedPoint]:
    """Associate whole path groups with their owner, filtered by day range.

    The owner is looked up once per group using the group's window. Groups
    with no owner, or entirely outside the inclusive UTC day range, are
    skipped; individual points outside the range are dropped.
    """

    range_start_ms: Optional[int] = None
    range_end_ms: Optional[int] = None
    if start_day is not None and end_day is not None:
        lo, hi = day_bounds(start_day, end_day)
        range_start_ms = int(lo.timestamp() * 1000)
        range_end_ms = int(hi.timestamp() * 1000)

    result: List[AssociatedPoint] = []
    processed = 0
    associated_groups = 0
    for group in groups:
        processed += 1
        group_start = int(group.start.timestamp() * 1000)
        group_end = int(group.end.timestamp() * 1000)
        if range_start_ms is not None and range_end_ms is not None:
            if group_end < range_start_ms or group_start > range_end_ms:
                continue
        parent = find_owning_parent(index, group_start, group_end)
        if parent is None:
            LOGGER.debug("Path group %s has no owning container", group.group_id)
            continue
        associated_groups += 1
        for point in group.points:
            ts = point.timestamp_ms
            if range_start_ms is not None and range_end_ms is not None:
                if ts < range_start_ms or ts > range_end_ms:
                    continue
            if parent.start_ms <= ts <= parent.end_ms:
                result.append(_associate(point, parent))
            else:
                result.append(associate_point(point, index))
    LOGGER.info(
        "Processed %d path groups, associated %d; %d points kept",
        processed,
        associated_groups,
        len(result),
    )
    return result


__all__ = [
    "PathGroup",
    "associate_path_groups",
    "associate_point",
    "associate_points",
    "suppress_points_in_visits",
]
