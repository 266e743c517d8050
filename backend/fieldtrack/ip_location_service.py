"""ip_location_service.py
~~~~~~~~~~~~~~~~~~~~~~~~~
Approximate the caller's position from its public IP address.

Strategy
--------
1. Walk an ordered list of independent, key-less lookup services.
2. Each attempt is bounded by its own timeout; a non-200 status, a payload
   without usable coordinates, a transport error or a timeout just moves on
   to the next service (logged, never surfaced).
3. First usable answer wins → ``LocationSample(source=ip, accuracy=None)``.
4. All services silent and a keyed service configured (Mapbox token and/or
   Google API key) → walk the key-less list once more for an anchor and let
   the keyed services, in order, refine it to a place centroid
   (``source=mapbox|google``). If none of them answers, the anchor itself
   is returned.
5. Still nothing → the documented last-resort coordinate, tagged
   ``is_fallback=True`` so callers can tell it apart from a genuine lookup.
   Pass ``default_coordinate=None`` to get ``provider_exhausted`` instead.

Every provider names its fields differently; :func:`normalise_payload`,
:func:`parse_mapbox` and :func:`parse_google` fold them into one shape.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Final, Optional, Sequence

import httpx

from . import constants
from .accuracy import classify_confidence, is_valid_coordinate
from .api_logging import logged_get
from .constants import DEFAULT_LATITUDE, DEFAULT_LONGITUDE, IP_TIMEOUT_S, USER_AGENT
from .exceptions import ProviderExhausted
from .models import LocationError, LocationSample, Source

LOG = logging.getLogger("ip_location_service")


@dataclass(frozen=True)
class IpEndpoint:
    name: str
    url: str


DEFAULT_ENDPOINTS: Final[tuple[IpEndpoint, ...]] = (
    IpEndpoint("ipinfo", "https://ipinfo.io/json"),
    IpEndpoint("ipapi", "https://ipapi.co/json/"),
    IpEndpoint("ipwhois", "https://ipwho.is/"),
)

DEFAULT_COORDINATE: Final = (DEFAULT_LATITUDE, DEFAULT_LONGITUDE)


@dataclass(frozen=True)
class IpFix:
    latitude: float
    longitude: float
    place: Optional[str] = None


def _place(payload: dict[str, Any]) -> str | None:
    city = payload.get("city")
    country = payload.get("country_name") or payload.get("country")
    parts = [p for p in (city, country) if isinstance(p, str) and p.strip()]
    return ", ".join(parts) if parts else None


def normalise_payload(payload: Any) -> IpFix | None:
    """
    Extract ``(lat, lon)`` from a provider JSON payload.

    Known shapes:
        * ipinfo.io      ``{"loc": "45.50,-73.56", "city": …}``
        * ipapi.co       ``{"latitude": 45.5, "longitude": -73.56}``
        * ipwho.is       ``{"success": true, "latitude": …, "longitude": …}``
        * ip-api.com     ``{"status": "success", "lat": …, "lon": …}``

    Explicit provider-side failures (``error``, ``success: false``,
    ``status: fail``) and out-of-range values yield ``None``.
    """
    if not isinstance(payload, dict):
        return None
    if payload.get("error") or payload.get("success") is False:
        return None
    if str(payload.get("status", "")).lower() == "fail":
        return None

    try:
        if isinstance(payload.get("loc"), str) and "," in payload["loc"]:
            lat_s, lon_s = payload["loc"].split(",", 1)
            lat, lon = float(lat_s), float(lon_s)
        elif payload.get("latitude") is not None and payload.get("longitude") is not None:
            lat, lon = float(payload["latitude"]), float(payload["longitude"])
        elif payload.get("lat") is not None and payload.get("lon") is not None:
            lat, lon = float(payload["lat"]), float(payload["lon"])
        else:
            return None
    except (TypeError, ValueError):
        return None

    if not is_valid_coordinate(lat, lon):
        return None
    return IpFix(latitude=lat, longitude=lon, place=_place(payload))


# ── Keyed refinement services ────────────────────────────────────────────
MAPBOX_URL: Final = "https://api.mapbox.com/geocoding/v5/mapbox.places/{lon},{lat}.json"
GOOGLE_URL: Final = "https://maps.googleapis.com/maps/api/geocode/json"


def parse_mapbox(payload: Any) -> IpFix | None:
    """``features[0].center`` is ``[lon, lat]``; ``text`` is the place name."""
    if not isinstance(payload, dict):
        return None
    features = payload.get("features")
    if not isinstance(features, list) or not features:
        return None
    first = features[0]
    try:
        lon, lat = float(first["center"][0]), float(first["center"][1])
    except (KeyError, IndexError, TypeError, ValueError):
        return None
    if not is_valid_coordinate(lat, lon):
        return None

    country = next(
        (
            c.get("text")
            for c in first.get("context") or []
            if isinstance(c, dict) and str(c.get("id", "")).startswith("country")
        ),
        None,
    )
    return IpFix(lat, lon, _place({"city": first.get("text"), "country": country}))


def parse_google(payload: Any) -> IpFix | None:
    """First result's ``geometry.location``; locality + country as the name."""
    if not isinstance(payload, dict):
        return None
    results = payload.get("results")
    if not isinstance(results, list) or not results:
        return None
    first = results[0]
    try:
        loc = first["geometry"]["location"]
        lat, lon = float(loc["lat"]), float(loc["lng"])
    except (KeyError, TypeError, ValueError):
        return None
    if not is_valid_coordinate(lat, lon):
        return None

    names: dict[str, str] = {}
    for comp in first.get("address_components") or []:
        if not isinstance(comp, dict):
            continue
        types = comp.get("types") or []
        if "locality" in types:
            names.setdefault("city", comp.get("long_name"))
        if "country" in types:
            names.setdefault("country", comp.get("long_name"))
    return IpFix(lat, lon, _place(names))


@dataclass(frozen=True)
class KeyedStage:
    """A keyed geocoding service that turns an IP anchor into a place fix."""

    name: str
    source: Source
    url: str
    params: Callable[[float, float], dict[str, str]]
    parse: Callable[[Any], Optional[IpFix]]

    def request_url(self, lat: float, lon: float) -> str:
        return self.url.format(lat=lat, lon=lon)


def mapbox_stage(token: str) -> KeyedStage:
    return KeyedStage(
        name="mapbox",
        source=Source.MAPBOX,
        url=MAPBOX_URL,
        params=lambda lat, lon: {"access_token": token, "types": "place"},
        parse=parse_mapbox,
    )


def google_stage(api_key: str) -> KeyedStage:
    return KeyedStage(
        name="google",
        source=Source.GOOGLE,
        url=GOOGLE_URL,
        params=lambda lat, lon: {"latlng": f"{lat},{lon}", "key": api_key},
        parse=parse_google,
    )


def keyed_stages_from_env() -> tuple[KeyedStage, ...]:
    """Mapbox then Google, each only when its key is configured."""
    stages = []
    if constants.MAPBOX_TOKEN:
        stages.append(mapbox_stage(constants.MAPBOX_TOKEN))
    if constants.GOOGLE_API_KEY:
        stages.append(google_stage(constants.GOOGLE_API_KEY))
    return tuple(stages)


class IpLocationProvider:
    """Ordered chain of IP geolocation services."""

    def __init__(
        self,
        endpoints: Sequence[IpEndpoint] = DEFAULT_ENDPOINTS,
        *,
        timeout: float | None = None,
        default_coordinate: tuple[float, float] | None = DEFAULT_COORDINATE,
        keyed_stages: Sequence[KeyedStage] | None = None,
    ) -> None:
        if len(endpoints) < 2:
            raise ValueError("IpLocationProvider needs at least two endpoints")
        self.endpoints = tuple(endpoints)
        self.timeout = IP_TIMEOUT_S if timeout is None else timeout
        self.default_coordinate = default_coordinate
        self.keyed_stages = (
            keyed_stages_from_env() if keyed_stages is None else tuple(keyed_stages)
        )

    async def _attempt(self, cli: httpx.AsyncClient, ep: IpEndpoint) -> IpFix | None:
        resp = await asyncio.wait_for(
            logged_get(cli, ep.url, label=ep.name), timeout=self.timeout
        )
        if resp.status_code != 200:
            return None
        return normalise_payload(resp.json())

    async def _walk(self, cli: httpx.AsyncClient, errors: list[str]) -> LocationSample | None:
        for ep in self.endpoints:
            try:
                fix = await self._attempt(cli, ep)
            except asyncio.TimeoutError:
                errors.append(f"{ep.name}: timeout")
                continue
            except (httpx.HTTPError, ValueError) as exc:
                errors.append(f"{ep.name}: {exc}")
                continue

            if fix is None:
                errors.append(f"{ep.name}: no usable coordinates")
                continue

            LOG.info(
                "[ip] %s → %.4f, %.4f (%s)",
                ep.name,
                fix.latitude,
                fix.longitude,
                fix.place or "?",
            )
            return LocationSample(
                latitude=fix.latitude,
                longitude=fix.longitude,
                accuracy=None,
                source=Source.IP,
                confidence=classify_confidence(Source.IP, None),
                provider=ep.name,
                place_name=fix.place,
            )
        return None

    async def _refine_once(
        self, cli: httpx.AsyncClient, stage: KeyedStage, anchor: LocationSample
    ) -> IpFix | None:
        resp = await asyncio.wait_for(
            logged_get(
                cli,
                stage.request_url(anchor.latitude, anchor.longitude),
                label=stage.name,
                params=stage.params(anchor.latitude, anchor.longitude),
            ),
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            return None
        return stage.parse(resp.json())

    async def _refine(self, cli: httpx.AsyncClient, errors: list[str]) -> LocationSample | None:
        anchor = await self._walk(cli, errors)
        if anchor is None:
            return None

        for stage in self.keyed_stages:
            try:
                fix = await self._refine_once(cli, stage, anchor)
            except asyncio.TimeoutError:
                errors.append(f"{stage.name}: timeout")
                continue
            except (httpx.HTTPError, ValueError) as exc:
                errors.append(f"{stage.name}: {exc}")
                continue

            if fix is None:
                errors.append(f"{stage.name}: no usable result")
                continue

            LOG.info(
                "[ip] %s refined → %.4f, %.4f (%s)",
                stage.name,
                fix.latitude,
                fix.longitude,
                fix.place or "?",
            )
            return LocationSample(
                latitude=fix.latitude,
                longitude=fix.longitude,
                accuracy=None,
                source=stage.source,
                confidence=classify_confidence(stage.source, None),
                provider=stage.name,
                place_name=fix.place or anchor.place_name,
            )

        LOG.warning("[ip] keyed refinement failed, keeping %s anchor", anchor.provider)
        return anchor

    async def resolve(self) -> LocationSample | LocationError:
        """Return the first usable IP fix, the fallback default, or an error."""
        errors: list[str] = []
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as cli:
            sample = await self._walk(cli, errors)
            if sample is None and self.keyed_stages:
                LOG.info(
                    "[ip] key-less services failed, retrying for %s",
                    "/".join(s.name for s in self.keyed_stages),
                )
                sample = await self._refine(cli, errors)

        if sample is not None:
            return sample

        LOG.warning("[ip] all %d services failed: %s", len(self.endpoints), errors)

        if self.default_coordinate is None:
            return ProviderExhausted(
                "IP geolocation failed: " + "; ".join(errors)
            ).to_error()

        lat, lon = self.default_coordinate
        LOG.warning("[ip] handing out last-resort default %.4f, %.4f", lat, lon)
        return LocationSample(
            latitude=lat,
            longitude=lon,
            accuracy=None,
            source=Source.IP,
            confidence=classify_confidence(Source.IP, None),
            is_fallback=True,
            provider="default",
        )
