"""Per-day summaries: daily centroids, daily presence and location stats.

All grouping is by UTC calendar day.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .geometry import is_valid_coordinate, round_coordinate
from .models import DailyCentroid, DailyPresence, LocationStats, Stop, is_resolved
from .stops import TimedPoint

LOGGER = logging.getLogger(__name__)

US_COUNTRY_NAME = "United States"


def _utc_days(series: pd.Series) -> pd.Series:
    return pd.to_datetime(series, utc=True).dt.date


def compute_daily_centroids(points: Sequence[TimedPoint]) -> List[DailyCentroid]:
    """Mean position and point count for every day with at least one valid point."""

    rows = [
        {"lat": p.latitude, "lng": p.longitude, "ts": p.timestamp}
        for p in points
        if is_valid_coordinate(p.latitude, p.longitude)
    ]
    if not rows:
        return []
    df = pd.DataFrame(rows)
    df["day"] = _utc_days(df["ts"])
    grouped = (
        df.groupby("day", sort=True)
        .agg(lat=("lat", "mean"), lng=("lng", "mean"), points=("lat", "size"))
        .reset_index()
    )
    centroids = [
        DailyCentroid(
            day=row.day,
            latitude=float(row.lat),
            longitude=float(row.lng),
            point_count=int(row.points),
        )
        for row in grouped.itertuples(index=False)
    ]
    LOGGER.info("Computed %d daily centroids from %d points", len(centroids), len(rows))
    return centroids


def build_daily_presence(
    stops: Sequence[Stop], max_samples_per_day: Optional[int] = None
) -> List[DailyPresence]:
    """Pick one (state, country) per day from geocoded stops.

    Each resolved stop is a sample on the day it starts, weighted by its
    dwell. The (state, country) pair with the most samples wins; equal counts
    go to the larger total dwell. When ``max_samples_per_day`` is set only
    the longest stops of each day vote. Stops without a country are ignored.
    """

    rows = [
        {
            "ts": s.start,
            "lat": s.latitude,
            "lng": s.longitude,
            "state": s.state or "",
            "country": s.country.strip(),
            "dwell_s": s.dwell.total_seconds(),
        }
        for s in stops
        if is_resolved(s.place) and s.country is not None
    ]
    if not rows:
        return []
    df = pd.DataFrame(rows)
    df["day"] = _utc_days(df["ts"])
    df = df.sort_values(
        ["day", "dwell_s", "ts"], ascending=[True, False, True], kind="stable"
    )
    if max_samples_per_day is not None:
        df = df.groupby("day", sort=False).head(max(1, max_samples_per_day))

    presence: List[DailyPresence] = []
    for day, day_rows in df.groupby("day", sort=True):
        votes = (
            day_rows.groupby(["state", "country"], sort=False)
            .agg(
                samples=("dwell_s", "size"),
                total_dwell=("dwell_s", "sum"),
                first_seen=("ts", "min"),
            )
            .reset_index()
            .sort_values(
                ["samples", "total_dwell", "first_seen"],
                ascending=[False, False, True],
                kind="stable",
            )
        )
        best = votes.iloc[0]
        winner = day_rows[
            (day_rows["state"] == best["state"]) & (day_rows["country"] == best["country"])
        ].iloc[0]
        presence.append(
            DailyPresence(
                day=day,
                latitude=float(winner["lat"]),
                longitude=float(winner["lng"]),
                country=str(best["country"]),
                state=str(best["state"]) or None,
                sample_count=int(len(day_rows)),
            )
        )
    LOGGER.info("Built daily presence for %d days", len(presence))
    return presence


def _percent(days: int, total: int) -> float:
    return round_coordinate(days / total * 100.0, 2)


def _ranked(counts: pd.Series, label: str, total: int) -> List[Dict[str, Any]]:
    ordered = counts.sort_values(ascending=False, kind="stable")
    return [
        {label: name, "days": int(days), "percent": _percent(int(days), total)}
        for name, days in ordered.items()
    ]


def location_stats_by_date_range(
    presence: Sequence[DailyPresence], start: date, end: date
) -> LocationStats:
    """Days per country and per US state between ``start`` and ``end`` inclusive.

    Each distinct (day, country, state) record counts once. Percentages are
    relative to the number of such records and rounded to two decimals;
    lists are sorted by days, most first.
    """

    rows = [
        {"day": p.day, "country": p.country or None, "state": p.state or None}
        for p in presence
        if start <= p.day <= end
    ]
    if not rows:
        return LocationStats(total_days=0, start=start, end=end)
    df = pd.DataFrame(rows).drop_duplicates(subset=["day", "country", "state"])
    total = len(df)
    countries = df["country"].dropna()
    countries = countries[countries != ""]
    us = df[(df["country"] == US_COUNTRY_NAME) & df["state"].notna()]
    return LocationStats(
        total_days=total,
        countries=_ranked(countries.value_counts(sort=False), "country", total),
        us_states=_ranked(us["state"].value_counts(sort=False), "state", total),
        start=start,
        end=end,
    )


__all__ = [
    "build_daily_presence",
    "compute_daily_centroids",
    "location_stats_by_date_range",
]
