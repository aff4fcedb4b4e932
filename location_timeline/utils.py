"""General utility helpers shared across modules."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

_EPOCH_DIGITS = re.compile(r"^-?\d+$")


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware UTC datetime (naive means UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an export timestamp into an aware UTC datetime.

    Accepts epoch milliseconds (int, float or digit string), ISO-8601 strings
    (a trailing ``Z`` is allowed, naive strings are treated as UTC) and
    datetime objects. Returns None for anything unparseable.
    """

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_utc_aware(value)
    try:
        if isinstance(value, (int, float)):
            return from_epoch_ms(value)
        if isinstance(value, str):
            text = value.strip()
            if _EPOCH_DIGITS.match(text):
                return from_epoch_ms(int(text))
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            return to_utc_aware(datetime.fromisoformat(text))
    except (ValueError, OverflowError, OSError):
        return None
    return None


def day_bounds(start_day: date, end_day: date) -> tuple[datetime, datetime]:
    """Return the inclusive UTC datetime window covering two calendar days."""

    start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=timezone.utc)
    end = datetime(
        end_day.year, end_day.month, end_day.day, tzinfo=timezone.utc
    ) + timedelta(days=1, microseconds=-1)
    return start, end


def _normalise_value(value: Any) -> Any:
    """Convert objects to JSON-friendly representations."""

    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        return float(value)
    if is_dataclass(value) and not isinstance(value, type):
        return _normalise_value(asdict(value))
    if isinstance(value, set):
        return sorted(_normalise_value(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_normalise_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalise_value(val) for key, val in value.items()}
    return value


def json_dumps_sorted(value: Any, *, indent: int | None = None) -> str:
    """Return canonical JSON (sorted keys) for dataclasses and datetimes."""

    normalised = _normalise_value(value)
    if indent is None:
        return json.dumps(normalised, sort_keys=True, separators=(",", ":"))
    return json.dumps(normalised, sort_keys=True, indent=indent)
