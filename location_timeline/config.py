"""Central configuration for the location timeline pipeline.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets (provider API keys) are read from environment
variables (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Stop detection
# ---------------------------------------------------------------------------
# A cluster must span at least this many minutes to be reported as a stop.
MIN_DWELL_MINUTES = _env_float("MIN_DWELL_MINUTES", 15.0)

# Maximum distance (metres) between a point and the running cluster centroid.
MAX_DISTANCE_METERS = _env_float("MAX_DISTANCE_METERS", 150.0)


# ---------------------------------------------------------------------------
# Trip segmentation
# ---------------------------------------------------------------------------
# Emit one route sample every time this much distance (metres) is covered.
ROUTE_SAMPLE_INTERVAL_METERS = _env_float("ROUTE_SAMPLE_INTERVAL_METERS", 40_000.0)


# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------
# Decimal places used to bucket coordinates for the cache (2 ~ 1 km).
CACHE_ROUNDING_PRECISION = _env_int("CACHE_ROUNDING_PRECISION", 2)

# Geoapify is the primary provider when an API key is present.
GEOAPIFY_API_KEY = os.getenv("GEOAPIFY_API_KEY", "")
GEOAPIFY_BASE_URL = os.getenv(
    "GEOAPIFY_BASE_URL", "https://api.geoapify.com/v1/geocode/reverse"
)

# Nominatim usage policy asks for an identifying User-Agent and 1 req/sec.
NOMINATIM_BASE_URL = os.getenv(
    "NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org/reverse"
)
NOMINATIM_USER_AGENT = os.getenv(
    "NOMINATIM_USER_AGENT", "location-timeline/0.1 (reverse-geocode)"
)

# Delay (milliseconds) applied after a request served by each provider.
GEOAPIFY_RATE_LIMIT_DELAY_MS = _env_int("GEOAPIFY_RATE_LIMIT_DELAY_MS", 50)
NOMINATIM_RATE_LIMIT_DELAY_MS = _env_int("NOMINATIM_RATE_LIMIT_DELAY_MS", 1000)

# Upper bound of buckets kept by the in-process geocode cache.
GEOCODE_MEMORY_CACHE_SIZE = _env_int("GEOCODE_MEMORY_CACHE_SIZE", 50_000)

# Normalise provider country names ("USA" -> "United States") before caching.
GEOCODE_NORMALIZE_COUNTRIES = _env_bool("GEOCODE_NORMALIZE_COUNTRIES", True)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
# Request timeout in seconds.
REQUEST_TIMEOUT = _env_float("REQUEST_TIMEOUT", 15.0)

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
# SQLAlchemy URL used by the command line tool when --database is omitted.
TIMELINE_DATABASE_URL = os.getenv("TIMELINE_DATABASE_URL", "sqlite:///timeline.db")

# Maximum stops returned by a single "list unresolved" query.
UNRESOLVED_BATCH_LIMIT = _env_int("UNRESOLVED_BATCH_LIMIT", 100)
