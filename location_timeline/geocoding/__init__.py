"""Reverse geocoding: providers, pacing, cache stores and the batch service."""

from .cache import GeocodeCacheStore, InMemoryGeocodeCache
from .countries import normalize_country_name
from .pacing import ChainResult, ProviderChain, ProviderPacer
from .providers import (
    GeoapifyProvider,
    GeocodingProvider,
    NominatimProvider,
    default_providers,
)
from .service import GeocodingService, GeocodingServiceConfig

__all__ = [
    "ChainResult",
    "GeoapifyProvider",
    "GeocodeCacheStore",
    "GeocodingProvider",
    "GeocodingService",
    "GeocodingServiceConfig",
    "InMemoryGeocodeCache",
    "NominatimProvider",
    "ProviderChain",
    "ProviderPacer",
    "default_providers",
    "normalize_country_name",
]
