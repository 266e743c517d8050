"""reverse_geocode_service.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Coordinate → human-readable place name via OpenStreetMap Nominatim.

Purely an enrichment: every failure (network, timeout, malformed payload,
no address components) is logged and turned into ``None``. Nothing in here
ever raises to the resolution flow.

* Polite use of Nominatim: geopy ``RateLimiter`` (≥ 1 s between calls).
* 15 min result cache keyed by coordinates rounded to 4 decimals (~11 m).
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Final, Optional

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from .constants import GEOCODE_TIMEOUT_S, USER_AGENT
from .models import UTC

LOG = logging.getLogger("reverse_geocode_service")

GEOCODE_CACHE_TTL_S: Final = 900
ZOOM_CITY: Final = 10

# Most specific first
_NAME_KEYS: Final = (
    ("city", "town", "village"),
    ("suburb",),
    ("county", "region", "state_district", "state"),
    ("country",),
)

_nominatim = Nominatim(user_agent=USER_AGENT)
_reverse_raw = RateLimiter(
    _nominatim.reverse, min_delay_seconds=1, max_retries=0, swallow_exceptions=False
)


def derive_place_name(raw: Any) -> str | None:
    """
    Pick the most useful name from a Nominatim ``reverse`` payload.

    city/town/village → suburb → county/region → country, then the first
    segment of ``display_name`` when no structured field is present.
    """
    if not isinstance(raw, dict):
        return None

    addr = raw.get("address")
    if isinstance(addr, dict):
        for group in _NAME_KEYS:
            for key in group:
                value = addr.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()

    display = raw.get("display_name")
    if isinstance(display, str) and display.strip():
        first = display.split(",")[0].strip()
        return first or None
    return None


class ReverseGeocoder:
    """Async, cached, failure-absorbing reverse geocoder."""

    def __init__(
        self,
        reverse: Optional[Callable[..., Any]] = None,
        *,
        timeout: float | None = None,
        cache_ttl_s: int = GEOCODE_CACHE_TTL_S,
    ) -> None:
        self._reverse = reverse or _reverse_raw
        self.timeout = GEOCODE_TIMEOUT_S if timeout is None else timeout
        self.cache_ttl_s = cache_ttl_s
        self._cache: dict[tuple[float, float], tuple[dt.datetime, str]] = {}

    def cache_clear(self) -> None:
        self._cache.clear()

    def _cached(self, key: tuple[float, float]) -> str | None:
        hit = self._cache.get(key)
        if hit is None:
            return None
        ts, name = hit
        if (dt.datetime.now(UTC) - ts).total_seconds() < self.cache_ttl_s:
            LOG.debug("Cache hit for %s", key)
            return name
        del self._cache[key]
        return None

    def _query(self, lat: float, lon: float) -> Any:
        return self._reverse(
            (lat, lon),
            exactly_one=True,
            timeout=self.timeout,
            zoom=ZOOM_CITY,
            addressdetails=True,
        )

    async def lookup(self, lat: float, lon: float) -> str | None:
        """Return a place name for *lat*/*lon*, or ``None``."""
        key = (round(lat, 4), round(lon, 4))
        cached = self._cached(key)
        if cached is not None:
            return cached

        try:
            location = await asyncio.wait_for(
                asyncio.to_thread(self._query, lat, lon), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            LOG.warning("Reverse geocode timed out for %.4f, %.4f", lat, lon)
            return None
        except (GeopyError, OSError, ValueError) as exc:
            LOG.warning("Reverse geocode failed for %.4f, %.4f: %s", lat, lon, exc)
            return None

        if location is None:
            LOG.info("Reverse geocode returned no result for %.4f, %.4f", lat, lon)
            return None

        name = derive_place_name(getattr(location, "raw", None))
        if name is None:
            LOG.info("No address components for %.4f, %.4f", lat, lon)
            return None

        LOG.info("Reverse geocoded %.4f, %.4f → %r", lat, lon, name)
        self._cache[key] = (dt.datetime.now(UTC), name)
        return name
