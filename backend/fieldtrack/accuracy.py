"""accuracy.py
~~~~~~~~~~~~~
Confidence tiers and coordinate sanity checks.

Both helpers are pure and total: they never raise, whatever they are fed.
"""

from __future__ import annotations

import math
from typing import Any

from .constants import HIGH_ACCURACY_M, MEDIUM_ACCURACY_M
from .models import Confidence, Source


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def classify_confidence(source: Source | str | None, accuracy: Any) -> Confidence:
    """
    Map ``(source, reported accuracy)`` to a confidence tier.

    * ``ip`` → ``low`` (no radius, city-level at best)
    * ``mapbox`` / ``google`` → ``medium`` (IP fix refined to a place centroid)
    * ``gps`` ≤ 10 m → ``high``, ≤ 50 m → ``medium``, > 50 m → ``low``
    * ``gps`` without a usable radius (``None``, NaN, negative) → ``unknown``
    * anything else → ``unknown``
    """
    try:
        source = Source(source)
    except ValueError:
        return Confidence.UNKNOWN

    if source is Source.IP:
        return Confidence.LOW
    if source in (Source.MAPBOX, Source.GOOGLE):
        return Confidence.MEDIUM

    radius = _as_float(accuracy)
    if radius is None or math.isnan(radius) or radius < 0:
        return Confidence.UNKNOWN
    if radius <= HIGH_ACCURACY_M:
        return Confidence.HIGH
    if radius <= MEDIUM_ACCURACY_M:
        return Confidence.MEDIUM
    return Confidence.LOW


def is_valid_coordinate(latitude: Any, longitude: Any) -> bool:
    """True when both values are finite numbers inside the WGS-84 ranges."""
    lat = _as_float(latitude)
    lon = _as_float(longitude)
    if lat is None or lon is None:
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
