"""Central error types used across the application."""

from __future__ import annotations


class LocationTimelineError(RuntimeError):
    """Base error for the location timeline package."""


class ExportFormatError(LocationTimelineError):
    """Raised when a location history export has an unrecognised structure."""


class TimelineOrderError(LocationTimelineError, ValueError):
    """Raised when points or stops are not in chronological order."""


class GeocoderError(LocationTimelineError):
    """Base error for reverse geocoding provider failures."""


class GeocoderRateLimitedError(GeocoderError):
    """Raised when a provider answers HTTP 429 or otherwise signals throttling."""


class GeocoderUnavailableError(GeocoderError):
    """Raised when a provider is not configured (e.g. missing API key)."""


class StorageError(LocationTimelineError):
    """Raised when the persistence layer cannot complete an operation."""


__all__ = [
    "LocationTimelineError",
    "ExportFormatError",
    "TimelineOrderError",
    "GeocoderError",
    "GeocoderRateLimitedError",
    "GeocoderUnavailableError",
    "StorageError",
]
