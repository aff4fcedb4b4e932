"""Command line entry point: build a waypoint timeline from a location export.

Usage:
    python -m location_timeline export.json --start-date 2024-01-01 --end-date 2024-12-31
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import date
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analytics import location_stats_by_date_range
from .config import MAX_DISTANCE_METERS, MIN_DWELL_MINUTES, TIMELINE_DATABASE_URL
from .errors import ExportFormatError, LocationTimelineError, StorageError
from .geocoding import GeocodingService, GeocodingServiceConfig
from .services import TimelineResult, TimelineService, TimelineServiceConfig
from .services.timeline_service import TimelineSettings
from .storage import InMemoryTimelineStore, SqlTimelineStore, TimelineStore
from .utils import json_dumps_sorted

LOGGER = logging.getLogger(__name__)


def _setup_logging(level: str = "INFO") -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, level),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconstruct stops and trips from a Google location history export"
    )
    parser.add_argument("export", type=Path, help="Path to the export JSON file")
    parser.add_argument(
        "--start-date",
        type=date.fromisoformat,
        help="First UTC day to include (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--end-date",
        type=date.fromisoformat,
        help="Last UTC day to include (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--min-dwell-minutes",
        type=float,
        default=MIN_DWELL_MINUTES,
        help=f"Minimum stop duration (default: {MIN_DWELL_MINUTES:g})",
    )
    parser.add_argument(
        "--max-distance-m",
        type=float,
        default=MAX_DISTANCE_METERS,
        help=f"Stop cluster radius in metres (default: {MAX_DISTANCE_METERS:g})",
    )
    parser.add_argument(
        "--database",
        default=TIMELINE_DATABASE_URL,
        help="SQLAlchemy URL for stops, segments and the geocode cache",
    )
    parser.add_argument(
        "--no-database",
        action="store_true",
        help="Keep everything in memory for this run",
    )
    parser.add_argument(
        "--no-geocode",
        action="store_true",
        help="Skip reverse geocoding of stops and routes",
    )
    parser.add_argument(
        "--resolve-pending",
        action="store_true",
        help="Afterwards, geocode stored stops that still lack a country",
    )
    parser.add_argument(
        "--run-id",
        help=(
            "Prefix for generated stop ids "
            "(default: derived from the export contents)"
        ),
    )
    parser.add_argument(
        "--output-file",
        type=Path,
        help="Write the timeline JSON here instead of stdout",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level",
    )
    return parser


def _default_run_id(raw: bytes) -> str:
    """Stable stop id prefix for one export file.

    Re-importing the same export reuses its ids, so the store rejects the
    duplicate run; a different export gets different ids.
    """

    return sha256(raw).hexdigest()[:12]


def _open_store(args: argparse.Namespace) -> TimelineStore:
    if args.no_database:
        return InMemoryTimelineStore()
    return SqlTimelineStore(args.database)


def _summarise(
    result: TimelineResult, start: Optional[date], end: Optional[date]
) -> Dict[str, Any]:
    days: List[date] = [p.day for p in result.daily_presence]
    stats = None
    if days:
        stats = location_stats_by_date_range(
            result.daily_presence, start or min(days), end or max(days)
        )
    return {
        "stops": result.stops,
        "segments": result.segments,
        "dailyCentroids": result.daily_centroids,
        "dailyPresence": result.daily_presence,
        "locationStats": stats,
        "geocodeMetrics": (
            result.geocode_metrics.as_dict() if result.geocode_metrics else None
        ),
        "persisted": result.persisted,
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _setup_logging(args.log_level)

    if (args.start_date is None) != (args.end_date is None):
        LOGGER.error("--start-date and --end-date must be given together")
        return 2

    try:
        raw = args.export.read_bytes()
        data = json.loads(raw)
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to load export '%s': %s", args.export, exc)
        return 1

    try:
        store = _open_store(args)
    except StorageError as exc:
        LOGGER.error("Failed to open database '%s': %s", args.database, exc)
        return 1

    run_id = args.run_id if args.run_id is not None else _default_run_id(raw)

    geocoder = None
    if not args.no_geocode:
        geocoder = GeocodingService(cache=store, config=GeocodingServiceConfig())
    service = TimelineService(
        TimelineServiceConfig(
            settings=TimelineSettings(
                min_dwell_minutes=args.min_dwell_minutes,
                max_distance_m=args.max_distance_m,
            ),
            geocoder=geocoder,
            store=store,
        )
    )

    try:
        result = service.process_export(
            data, args.start_date, args.end_date, run_id=run_id
        )
    except ExportFormatError as exc:
        LOGGER.error("Unsupported export '%s': %s", args.export, exc)
        return 1

    exit_code = 0
    if args.resolve_pending:
        try:
            service.resolve_unresolved_stops()
        except LocationTimelineError as exc:
            LOGGER.error("Resolving stored stops failed: %s", exc)
            exit_code = 1

    summary = _summarise(result, args.start_date, args.end_date)
    payload = json_dumps_sorted(summary, indent=2)
    if args.output_file:
        args.output_file.write_text(payload + "\n", encoding="utf-8")
        LOGGER.info("Timeline written to %s", args.output_file)
    else:
        print(payload)
    return exit_code


__all__ = ["main"]
