"""Sequential provider pacing and primary-then-fallback resolution."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..errors import GeocoderError, GeocoderRateLimitedError
from ..models import Place
from .providers import GeocodingProvider

LOGGER = logging.getLogger(__name__)

__all__ = ["ChainResult", "ProviderChain", "ProviderPacer"]


class ProviderPacer:
    """Enforce the delay owed after each provider request.

    State is the provider that served the previous request and when that
    request finished. Before the next request the remaining part of that
    provider's delay is slept off, whichever provider is called next.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self.last_provider: Optional[str] = None
        self._last_delay_s: float = 0.0
        self._last_finished: Optional[float] = None

    def remaining_delay(self) -> float:
        if self._last_finished is None:
            return 0.0
        elapsed = self._clock() - self._last_finished
        return max(0.0, self._last_delay_s - elapsed)

    def wait(self) -> float:
        """Sleep until the next request may start; return seconds slept."""

        remaining = self.remaining_delay()
        if remaining > 0:
            self._sleep(remaining)
        return remaining

    def record(self, provider: GeocodingProvider) -> None:
        self.last_provider = provider.name
        self._last_delay_s = max(0, provider.delay_ms) / 1000.0
        self._last_finished = self._clock()

    def reset(self) -> None:
        self.last_provider = None
        self._last_delay_s = 0.0
        self._last_finished = None


@dataclass(frozen=True, slots=True)
class ChainResult:
    place: Place
    provider: str
    attempts: int


class ProviderChain:
    """Try providers in order for one coordinate, pacing every request.

    A provider that raises (transport error, non-2xx status, rate limit)
    hands over to the next one. An empty answer without an error is final.
    """

    def __init__(
        self,
        providers: Sequence[GeocodingProvider],
        pacer: Optional[ProviderPacer] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not providers:
            raise ValueError("ProviderChain requires at least one provider")
        self.providers = list(providers)
        self.pacer = pacer or ProviderPacer()
        self._log = logger or LOGGER

    def resolve(self, lat: float, lng: float) -> ChainResult:
        """Return the first provider answer or raise the last provider error."""

        last_error: Optional[GeocoderError] = None
        for attempt, provider in enumerate(self.providers, start=1):
            self.pacer.wait()
            try:
                place = provider.reverse(lat, lng)
            except GeocoderRateLimitedError as exc:
                last_error = exc
                self._log.warning(
                    "%s rate limited at %.5f,%.5f; trying next provider",
                    provider.name,
                    lat,
                    lng,
                )
                continue
            except GeocoderError as exc:
                last_error = exc
                self._log.warning(
                    "%s failed at %.5f,%.5f: %s", provider.name, lat, lng, exc
                )
                continue
            finally:
                self.pacer.record(provider)
            return ChainResult(place=place, provider=provider.name, attempts=attempt)
        assert last_error is not None
        raise last_error
