"""Reverse geocoding providers (Geoapify primary, Nominatim fallback)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Type

import requests
from requests import Session

from ..config import (
    GEOAPIFY_API_KEY,
    GEOAPIFY_BASE_URL,
    GEOAPIFY_RATE_LIMIT_DELAY_MS,
    GEOCODE_NORMALIZE_COUNTRIES,
    NOMINATIM_BASE_URL,
    NOMINATIM_RATE_LIMIT_DELAY_MS,
    NOMINATIM_USER_AGENT,
    REQUEST_TIMEOUT,
)
from ..errors import GeocoderError, GeocoderRateLimitedError, GeocoderUnavailableError
from ..models import Place
from .countries import normalize_country_name
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

RequestsJSONDecodeError: Type[Exception]
if hasattr(requests.exceptions, "JSONDecodeError"):
    RequestsJSONDecodeError = requests.exceptions.JSONDecodeError
else:  # pragma: no cover - fallback for old requests versions
    RequestsJSONDecodeError = ValueError


class GeocodingProvider(Protocol):
    """A coordinate -> place lookup with its own pacing delay."""

    name: str
    delay_ms: int

    def reverse(self, lat: float, lng: float) -> Place: ...


def classify_response_status(
    response: requests.Response, context: str
) -> Optional[GeocoderError]:
    """Return the error matching a non-success status, or None when OK."""

    status = response.status_code
    if status == 429:
        message = f"{context} rate limited (429)"
        LOGGER.warning(message)
        return GeocoderRateLimitedError(message)
    if status in (401, 403):
        message = f"{context} rejected credentials (status {status})"
        LOGGER.warning(message)
        return GeocoderError(message)
    if 400 <= status < 600:
        detail = _extract_error_text(response)
        message = f"{context} request failed (status {status})"
        if detail:
            message = f"{message} | {detail}"
        LOGGER.warning(message)
        return GeocoderError(message)
    return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:197] + "...") if len(trimmed) > 200 else trimmed


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _first_text(mapping: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = _clean(mapping.get(key))
        if value:
            return value
    return None


class _HttpProvider:
    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        delay_ms: int,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        normalize_countries: bool = GEOCODE_NORMALIZE_COUNTRIES,
    ) -> None:
        self.base_url = base_url
        self.delay_ms = delay_ms
        self._session = session
        self.timeout = timeout
        self.normalize_countries = normalize_countries

    @property
    def session(self) -> Session:
        if self._session is None:
            self._session = get_default_session()
        return self._session

    def _country(self, value: Any) -> Optional[str]:
        country = _clean(value)
        if self.normalize_countries:
            return normalize_country_name(country)
        return country

    def _get_json(
        self,
        params: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        context = f"{self.name} reverse geocode"
        try:
            resp = self.session.get(
                self.base_url, params=params, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise GeocoderError(f"{context} transport error: {exc}") from exc
        error = classify_response_status(resp, context)
        if error is not None:
            raise error
        try:
            return resp.json()
        except (ValueError, RequestsJSONDecodeError) as exc:
            raise GeocoderError(f"{context} returned invalid JSON: {exc}") from exc


class GeoapifyProvider(_HttpProvider):
    """Geoapify reverse geocoding (requires an API key)."""

    name = "geoapify"

    def __init__(
        self,
        api_key: str = GEOAPIFY_API_KEY,
        *,
        base_url: str = GEOAPIFY_BASE_URL,
        delay_ms: int = GEOAPIFY_RATE_LIMIT_DELAY_MS,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        normalize_countries: bool = GEOCODE_NORMALIZE_COUNTRIES,
    ) -> None:
        super().__init__(
            base_url,
            delay_ms=delay_ms,
            session=session,
            timeout=timeout,
            normalize_countries=normalize_countries,
        )
        self.api_key = api_key

    def reverse(self, lat: float, lng: float) -> Place:
        if not self.api_key:
            raise GeocoderUnavailableError("GEOAPIFY_API_KEY is not configured")
        data = self._get_json(
            {"lat": lat, "lon": lng, "apiKey": self.api_key, "format": "json"}
        )
        results = data.get("results") if isinstance(data, Mapping) else None
        if not isinstance(results, list) or not results:
            LOGGER.debug("Geoapify returned no results for %.5f,%.5f", lat, lng)
            return Place.empty()
        first = results[0]
        if not isinstance(first, Mapping):
            return Place.empty()
        return Place(
            city=_first_text(first, "city", "town", "village"),
            state=_clean(first.get("state")),
            country=self._country(first.get("country")),
            address=_clean(first.get("formatted")),
        )


class NominatimProvider(_HttpProvider):
    """OpenStreetMap Nominatim reverse geocoding (keyless, 1 request/second)."""

    name = "nominatim"

    def __init__(
        self,
        *,
        base_url: str = NOMINATIM_BASE_URL,
        user_agent: str = NOMINATIM_USER_AGENT,
        delay_ms: int = NOMINATIM_RATE_LIMIT_DELAY_MS,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        normalize_countries: bool = GEOCODE_NORMALIZE_COUNTRIES,
    ) -> None:
        super().__init__(
            base_url,
            delay_ms=delay_ms,
            session=session,
            timeout=timeout,
            normalize_countries=normalize_countries,
        )
        self.user_agent = user_agent

    def reverse(self, lat: float, lng: float) -> Place:
        data = self._get_json(
            {"lat": lat, "lon": lng, "format": "json", "addressdetails": 1},
            headers={"User-Agent": self.user_agent},
        )
        address = data.get("address") if isinstance(data, Mapping) else None
        if not isinstance(address, Mapping):
            LOGGER.debug("Nominatim returned no address for %.5f,%.5f", lat, lng)
            return Place.empty()
        return Place(
            city=_first_text(address, "city", "town", "village", "hamlet"),
            state=_clean(address.get("state")),
            country=self._country(address.get("country")),
            address=_clean(data.get("display_name")),
        )


def default_providers(
    api_key: Optional[str] = None, session: Optional[Session] = None
) -> list[GeocodingProvider]:
    """Return the provider order: Geoapify then Nominatim, or Nominatim alone."""

    key = GEOAPIFY_API_KEY if api_key is None else api_key
    nominatim = NominatimProvider(session=session)
    if key:
        return [GeoapifyProvider(key, session=session), nominatim]
    LOGGER.info("GEOAPIFY_API_KEY not set; using Nominatim only")
    return [nominatim]


__all__ = [
    "GeoapifyProvider",
    "GeocodingProvider",
    "NominatimProvider",
    "classify_response_status",
    "default_providers",
]
