"""Timeline pipeline service.

Runs one export through association, stop detection, stop geocoding,
segmentation and persistence. Each stage works on whatever the previous one
produced; a failing geocoder or store is logged and the pipeline carries on
with what it has.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence

from ..analytics import build_daily_presence, compute_daily_centroids
from ..config import (
    MAX_DISTANCE_METERS,
    MIN_DWELL_MINUTES,
    ROUTE_SAMPLE_INTERVAL_METERS,
    UNRESOLVED_BATCH_LIMIT,
)
from ..errors import LocationTimelineError
from ..models import (
    AssociatedPoint,
    CacheMetrics,
    DailyCentroid,
    DailyPresence,
    RawPoint,
    Segment,
    Stop,
    TimeContainer,
    is_resolved,
)
from ..segments import build_segments
from ..stops import detect_stops
from ..storage.base import QueueKey, TimelineStore, queue_key
from ..timeline import (
    associate_path_groups,
    associate_points,
    build_index,
    read_export,
    suppress_points_in_visits,
)
from ..timeline.index import ContainerIndex
from ..geocoding.service import GeocodingService


@dataclass(slots=True)
class TimelineSettings:
    min_dwell_minutes: float = MIN_DWELL_MINUTES
    max_distance_m: float = MAX_DISTANCE_METERS
    route_sample_interval_m: float = ROUTE_SAMPLE_INTERVAL_METERS
    unresolved_batch_limit: int = UNRESOLVED_BATCH_LIMIT


@dataclass(slots=True)
class TimelineServiceConfig:
    settings: TimelineSettings = field(default_factory=TimelineSettings)
    geocoder: GeocodingService | None = None
    store: TimelineStore | None = None
    logger: logging.Logger | None = None


@dataclass(slots=True)
class TimelineResult:
    points: List[AssociatedPoint] = field(default_factory=list)
    stops: List[Stop] = field(default_factory=list)
    segments: List[Segment] = field(default_factory=list)
    daily_centroids: List[DailyCentroid] = field(default_factory=list)
    daily_presence: List[DailyPresence] = field(default_factory=list)
    geocode_metrics: CacheMetrics | None = None
    persisted: bool = False


class TimelineService:
    def __init__(self, config: TimelineServiceConfig | None = None):
        self.config = config or TimelineServiceConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)

    @property
    def settings(self) -> TimelineSettings:
        return self.config.settings

    def process_export(
        self,
        data: Any,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
        run_id: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> TimelineResult:
        """Run the full pipeline for a parsed export (``json.load`` output)."""

        export = read_export(data)
        index = build_index(export.containers)
        points = associate_path_groups(export.path_groups, index, start_day, end_day)
        return self._run(index, points, run_id, cancel_event)

    def build_timeline(
        self,
        containers: Iterable[TimeContainer],
        points: Iterable[RawPoint],
        run_id: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> TimelineResult:
        """Run the pipeline for already-normalised containers and points."""

        index = build_index(containers)
        associated = associate_points(points, index)
        return self._run(index, associated, run_id, cancel_event)

    def _run(
        self,
        index: ContainerIndex,
        points: Sequence[AssociatedPoint],
        run_id: str,
        cancel_event: Optional[threading.Event],
    ) -> TimelineResult:
        ordered = sorted(points, key=lambda p: p.timestamp)
        result = TimelineResult(points=ordered)
        result.stops = detect_stops(
            ordered,
            min_dwell_minutes=self.settings.min_dwell_minutes,
            max_distance_m=self.settings.max_distance_m,
            id_prefix=f"{run_id}:stop_" if run_id else "stop_",
        )
        result.geocode_metrics = self.geocode_stops(result.stops, cancel_event)
        result.segments = build_segments(
            result.stops,
            ordered,
            geocoder=self.config.geocoder,
            sample_interval_m=self.settings.route_sample_interval_m,
        )
        result.daily_centroids = compute_daily_centroids(
            suppress_points_in_visits(ordered, index)
        )
        result.daily_presence = build_daily_presence(result.stops)
        result.persisted = self._persist(result)
        self._log.info(
            "Timeline built: %d points, %d stops, %d segments, %d days",
            len(result.points),
            len(result.stops),
            len(result.segments),
            len(result.daily_centroids),
        )
        return result

    def geocode_stops(
        self,
        stops: Sequence[Stop],
        cancel_event: Optional[threading.Event] = None,
    ) -> CacheMetrics | None:
        """Resolve stop centroids in one batch and copy places onto the stops."""

        geocoder = self.config.geocoder
        if geocoder is None or not stops:
            return None
        try:
            batch = geocoder.resolve_batch(
                [stop.centroid for stop in stops], cancel_event=cancel_event
            )
        except LocationTimelineError as exc:
            self._log.error("Stop geocoding failed for %d stops: %s", len(stops), exc)
            return None
        for stop, place in zip(stops, batch.results):
            stop.apply_place(place)
        return batch.metrics

    def _persist(self, result: TimelineResult) -> bool:
        store = self.config.store
        if store is None:
            return False
        try:
            store.save_timeline(result.stops, result.segments)
        except LocationTimelineError as exc:
            self._log.error(
                "Failed to persist %d stops / %d segments: %s",
                len(result.stops),
                len(result.segments),
                exc,
            )
            return False
        return True

    def resolve_unresolved_stops(
        self,
        max_batches: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Geocode stored stops that still lack a country, batch by batch.

        Batches page forward through the unresolved queue by ``(start,
        stop_id)``, so each stop is tried at most once per call and stops
        that never resolve cannot hold back the ones behind them. A batch
        whose lookup fails, or a stop whose update fails, is logged and
        skipped. Runs until the queue is exhausted, ``max_batches`` batches
        have run, or ``cancel_event`` is set. Returns the number of stops
        updated.
        """

        store = self.config.store
        geocoder = self.config.geocoder
        if store is None or geocoder is None:
            return 0
        try:
            remaining = store.count_unresolved_stops()
        except LocationTimelineError as exc:
            self._log.error("Could not count unresolved stops: %s", exc)
            return 0
        if remaining == 0:
            return 0

        updated = 0
        failed = 0
        batch_number = 0
        cursor: Optional[QueueKey] = None
        while max_batches is None or batch_number < max_batches:
            try:
                pending = store.list_unresolved_stops(
                    self.settings.unresolved_batch_limit, after=cursor
                )
            except LocationTimelineError as exc:
                self._log.error("Could not list unresolved stops after %s: %s", cursor, exc)
                break
            if not pending:
                break
            batch_number += 1
            cursor = queue_key(pending[-1])
            self._log.info(
                "Batch %d: geocoding %d stops (%d unresolved at start)",
                batch_number,
                len(pending),
                remaining,
            )
            try:
                batch = geocoder.resolve_batch(
                    [stop.centroid for stop in pending], cancel_event=cancel_event
                )
            except LocationTimelineError as exc:
                self._log.error(
                    "Batch %d geocoding failed for %d stops: %s",
                    batch_number,
                    len(pending),
                    exc,
                )
                continue
            for stop, place in zip(pending, batch.results):
                if not is_resolved(place):
                    continue
                try:
                    if store.update_stop_place(stop.stop_id, place):
                        updated += 1
                except LocationTimelineError as exc:
                    failed += 1
                    self._log.error("Failed to store place for stop %s: %s", stop.stop_id, exc)
            if batch.metrics.cancelled:
                break
        self._log.info(
            "Resolved %d stored stops in %d batches (%d updates failed)",
            updated,
            batch_number,
            failed,
        )
        return updated


__all__ = [
    "TimelineResult",
    "TimelineService",
    "TimelineServiceConfig",
    "TimelineSettings",
]
