"""Cache-first batch reverse geocoding.

``GeocodingService.resolve_batch`` validates coordinates, buckets them to a
fixed precision, answers what it can from the cache store in one bulk call
and resolves the remaining buckets one at a time through the provider chain.
Every resolved bucket is written back immediately, so an aborted batch keeps
the work it already paid for.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config import CACHE_ROUNDING_PRECISION
from ..errors import GeocoderError
from ..geometry import bucket_key, is_valid_coordinate
from ..models import (
    BatchGeocodeResult,
    CacheEntry,
    CacheMetrics,
    LatLng,
    Place,
    is_resolved,
)
from .cache import GeocodeCacheStore, InMemoryGeocodeCache
from .pacing import ProviderChain
from .providers import default_providers


@dataclass(slots=True)
class GeocodingServiceConfig:
    rounding_precision: int = CACHE_ROUNDING_PRECISION
    logger: logging.Logger | None = None


@dataclass(slots=True)
class _BucketPlan:
    """Input slots grouped by bucket, in first-seen bucket order."""

    slots: Dict[LatLng, List[int]] = field(default_factory=dict)
    invalid: List[int] = field(default_factory=list)

    @property
    def buckets(self) -> List[LatLng]:
        return list(self.slots)


class GeocodingService:
    def __init__(
        self,
        cache: Optional[GeocodeCacheStore] = None,
        chain: Optional[ProviderChain] = None,
        config: GeocodingServiceConfig | None = None,
    ) -> None:
        self.config = config or GeocodingServiceConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.cache: GeocodeCacheStore = cache if cache is not None else InMemoryGeocodeCache()
        self.chain = chain or ProviderChain(default_providers(), logger=self._log)

    def _plan(self, coordinates: Sequence[LatLng]) -> _BucketPlan:
        plan = _BucketPlan()
        precision = self.config.rounding_precision
        for position, coordinate in enumerate(coordinates):
            try:
                lat, lng = coordinate
            except (TypeError, ValueError):
                plan.invalid.append(position)
                continue
            if not is_valid_coordinate(lat, lng):
                self._log.debug("Skipping invalid coordinate [%d]: %r", position, coordinate)
                plan.invalid.append(position)
                continue
            key = bucket_key(float(lat), float(lng), precision)
            plan.slots.setdefault(key, []).append(position)
        return plan

    def _lookup_cached(self, buckets: Sequence[LatLng]) -> Dict[LatLng, Place]:
        if not buckets:
            return {}
        try:
            entries = self.cache.bulk_get(buckets)
        except Exception as exc:
            self._log.warning(
                "Geocode cache lookup failed for %d buckets; treating all as misses: %s",
                len(buckets),
                exc,
            )
            return {}
        return {
            key: entry.to_place()
            for key, entry in entries.items()
            if is_resolved(entry)
        }

    def _write_back(self, key: LatLng, place: Place) -> None:
        entry = CacheEntry(
            lat_rounded=key[0],
            lng_rounded=key[1],
            city=place.city,
            state=place.state,
            country=place.country,
            address=place.address,
        )
        try:
            self.cache.upsert(entry)
        except Exception as exc:
            self._log.warning("Failed to cache geocode for bucket %s: %s", key, exc)

    def resolve_one(self, lat: float, lng: float) -> Place:
        """Resolve a single coordinate through the same cache-first path."""

        return self.resolve_batch([(lat, lng)]).results[0]

    def resolve_batch(
        self,
        coordinates: Sequence[LatLng],
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchGeocodeResult:
        """Return one Place per input coordinate, in input order.

        Invalid coordinates and unresolved lookups yield ``Place.empty()``.
        Setting ``cancel_event`` stops the provider loop before the next
        miss; places resolved so far are already cached and returned.
        """

        metrics = CacheMetrics(total_requested=len(coordinates))
        results: List[Place] = [Place.empty()] * len(coordinates)
        if not coordinates:
            return BatchGeocodeResult(results=results, metrics=metrics)

        plan = self._plan(coordinates)
        metrics.invalid_coordinates = len(plan.invalid)
        if not plan.slots:
            self._log.info(
                "No valid coordinates among %d requested", len(coordinates)
            )
            return BatchGeocodeResult(results=results, metrics=metrics)

        cached = self._lookup_cached(plan.buckets)
        misses = [key for key in plan.buckets if key not in cached]
        metrics.cache_hits = len(cached)
        metrics.cache_misses = len(misses)

        resolved: Dict[LatLng, Place] = dict(cached)
        for position, key in enumerate(misses):
            if cancel_event is not None and cancel_event.is_set():
                metrics.cancelled = True
                self._log.warning(
                    "Geocoding cancelled with %d of %d misses unresolved",
                    len(misses) - position,
                    len(misses),
                )
                break
            metrics.new_api_calls += 1
            try:
                answer = self.chain.resolve(key[0], key[1])
            except GeocoderError as exc:
                metrics.failed_lookups += 1
                self._log.error("All providers failed for bucket %s: %s", key, exc)
                continue
            resolved[key] = answer.place
            if is_resolved(answer.place):
                self._write_back(key, answer.place)
            else:
                self._log.debug(
                    "%s returned no country for bucket %s; not caching",
                    answer.provider,
                    key,
                )

        for key, slots in plan.slots.items():
            place = resolved.get(key)
            if place is None:
                continue
            for slot in slots:
                results[slot] = place

        coverage = sum(1 for place in results if is_resolved(place))
        self._log.info(
            "Geocoded batch: %d requested, %d hits, %d misses, %d api calls, "
            "%d invalid, %d failed, %d/%d with country",
            metrics.total_requested,
            metrics.cache_hits,
            metrics.cache_misses,
            metrics.new_api_calls,
            metrics.invalid_coordinates,
            metrics.failed_lookups,
            coverage,
            len(results),
        )
        return BatchGeocodeResult(results=results, metrics=metrics)


__all__ = ["GeocodingService", "GeocodingServiceConfig"]
