"""Sorted interval index over activity/visit containers.

Owner lookup is a binary search over container start times followed by a
short local scan, never a pairwise overlap test of every point against every
container.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from ..models import TimeContainer

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ContainerIndex:
    """Activities and visits, each sorted ascending by start time."""

    activities: List[TimeContainer] = field(default_factory=list)
    visits: List[TimeContainer] = field(default_factory=list)
    _activity_starts: List[int] = field(default_factory=list, init=False, repr=False)
    _visit_starts: List[int] = field(default_factory=list, init=False, repr=False)
    _activity_max_ends: List[int] = field(default_factory=list, init=False, repr=False)
    _visit_max_ends: List[int] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self.activities.sort(key=lambda c: c.start_ms)
        self.visits.sort(key=lambda c: c.start_ms)
        self._activity_starts = [c.start_ms for c in self.activities]
        self._visit_starts = [c.start_ms for c in self.visits]
        self._activity_max_ends = _running_max_ends(self.activities)
        self._visit_max_ends = _running_max_ends(self.visits)

    def __len__(self) -> int:
        return len(self.activities) + len(self.visits)

    def overlapping_activities(self, start_ms: int, end_ms: int) -> List[TimeContainer]:
        return _find_overlapping(
            self.activities, self._activity_starts, self._activity_max_ends, start_ms, end_ms
        )

    def overlapping_visits(self, start_ms: int, end_ms: int) -> List[TimeContainer]:
        return _find_overlapping(
            self.visits, self._visit_starts, self._visit_max_ends, start_ms, end_ms
        )


def _running_max_ends(containers: Sequence[TimeContainer]) -> List[int]:
    ends: List[int] = []
    current: Optional[int] = None
    for container in containers:
        current = container.end_ms if current is None else max(current, container.end_ms)
        ends.append(current)
    return ends


def _is_well_formed(container: TimeContainer) -> bool:
    if not isinstance(container.start, datetime) or not isinstance(container.end, datetime):
        return False
    try:
        return container.end_ms >= container.start_ms
    except (OverflowError, OSError, ValueError):
        return False


def build_index(containers: Iterable[TimeContainer]) -> ContainerIndex:
    """Split containers by kind and sort each list by start time.

    Containers without usable start/end timestamps, or whose end precedes
    their start, are discarded.
    """

    activities: List[TimeContainer] = []
    visits: List[TimeContainer] = []
    discarded = 0
    for container in containers:
        if not _is_well_formed(container):
            discarded += 1
            LOGGER.debug("Discarding malformed container id=%s", container.container_id)
            continue
        if container.kind == "activity":
            activities.append(container)
        elif container.kind == "visit":
            visits.append(container)
        else:
            discarded += 1
            LOGGER.debug(
                "Discarding container id=%s with unknown kind=%s",
                container.container_id,
                container.kind,
            )
    index = ContainerIndex(activities=activities, visits=visits)
    LOGGER.info(
        "Built container index: %d activities, %d visits (%d discarded)",
        len(index.activities),
        len(index.visits),
        discarded,
    )
    return index


def overlap_ms(container: TimeContainer, start_ms: int, end_ms: int) -> Optional[int]:
    """Return the overlap length between a container and a window, or None.

    A positive-width window must share a non-empty interval with the
    container. A zero-width window (a single timestamp) overlaps when the
    timestamp lies inside the container, bounds included, with length 0.
    """

    if start_ms == end_ms:
        if container.start_ms <= start_ms <= container.end_ms:
            return 0
        return None
    lo = max(container.start_ms, start_ms)
    hi = min(container.end_ms, end_ms)
    if lo < hi:
        return hi - lo
    return None


def _find_overlapping(
    containers: Sequence[TimeContainer],
    starts: Sequence[int],
    max_ends: Sequence[int],
    start_ms: int,
    end_ms: int,
) -> List[TimeContainer]:
    if not containers:
        return []
    # First container starting at or after the window start.
    scan_start = bisect_left(starts, start_ms)
    # Walk back while an earlier container may still be running.
    # max_ends[i] is the latest end among containers[0..i].
    while scan_start > 0 and max_ends[scan_start - 1] >= start_ms:
        scan_start -= 1
    overlapping: List[TimeContainer] = []
    for container in containers[scan_start:]:
        if container.start_ms > end_ms:
            break
        if overlap_ms(container, start_ms, end_ms) is not None:
            overlapping.append(container)
    return overlapping


def _largest_overlap(
    candidates: Sequence[TimeContainer], start_ms: int, end_ms: int
) -> TimeContainer:
    best = candidates[0]
    best_overlap = overlap_ms(best, start_ms, end_ms) or 0
    for candidate in candidates[1:]:
        current = overlap_ms(candidate, start_ms, end_ms) or 0
        if current > best_overlap:
            best = candidate
            best_overlap = current
    return best


def find_owning_parent(
    index: ContainerIndex, start_ms: int, end_ms: int
) -> Optional[TimeContainer]:
    """Return the container that best owns the window ``[start_ms, end_ms]``.

    Activities are searched first because they carry the raw GPS path; visits
    are only consulted when no activity overlaps. Within a kind the largest
    overlap wins and ties keep the earliest candidate.
    """

    if end_ms < start_ms:
        start_ms, end_ms = end_ms, start_ms
    activities = index.overlapping_activities(start_ms, end_ms)
    if activities:
        return _largest_overlap(activities, start_ms, end_ms)
    visits = index.overlapping_visits(start_ms, end_ms)
    if visits:
        return _largest_overlap(visits, start_ms, end_ms)
    return None


__all__ = [
    "ContainerIndex",
    "build_index",
    "find_owning_parent",
    "overlap_ms",
]
