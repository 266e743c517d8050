"""models.py
~~~~~~~~~~~
Value types shared by every location component.

All of them are frozen dataclasses: a sample, a breadcrumb or a resolution
state is never mutated, a new one is produced instead
(:func:`dataclasses.replace`).
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from dateutil import tz

from .constants import DEVICE_HIGH_ACCURACY, DEVICE_MAX_AGE_MS, DEVICE_TIMEOUT_MS

UTC = tz.UTC


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


class Source(str, Enum):
    GPS = "gps"
    IP = "ip"
    # IP fix refined to a place centroid by a keyed geocoding service
    MAPBOX = "mapbox"
    GOOGLE = "google"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RESOLVED = "resolved"
    ERROR = "error"


class ErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    PROVIDER_EXHAUSTED = "provider_exhausted"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class PositionOptions:
    """Options forwarded to the device for a single position request."""

    high_accuracy: bool = DEVICE_HIGH_ACCURACY
    timeout_ms: int = DEVICE_TIMEOUT_MS
    max_age_ms: int = DEVICE_MAX_AGE_MS


@dataclass(frozen=True)
class LocationSample:
    """
    One resolved position.

    ``accuracy`` is the reported radius in metres; it is always set for
    ``gps`` samples and always ``None`` for the other sources.
    ``is_fallback`` marks the last-resort default coordinate handed out
    when every IP service failed.
    """

    latitude: float
    longitude: float
    accuracy: Optional[float]
    source: Source
    confidence: Confidence = Confidence.UNKNOWN
    captured_at: dt.datetime = field(default_factory=utcnow)
    is_fallback: bool = False
    provider: Optional[str] = None
    place_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.accuracy is not None and math.isnan(self.accuracy):
            data["accuracy"] = None
        data["source"] = self.source.value
        data["confidence"] = self.confidence.value
        data["captured_at"] = self.captured_at.isoformat()
        return data


@dataclass(frozen=True)
class Breadcrumb:
    """A stored, employee-attributed sample, optionally tied to a visit."""

    id: str
    employee_id: str
    visit_id: Optional[str]
    sample: LocationSample
    created_at: dt.datetime = field(default_factory=utcnow)
    battery_level: Optional[float] = None
    speed: Optional[float] = None
    tracking_mode: Literal["active", "passive"] = "active"

    @property
    def latitude(self) -> float:
        return self.sample.latitude

    @property
    def longitude(self) -> float:
        return self.sample.longitude

    @property
    def captured_at(self) -> dt.datetime:
        return self.sample.captured_at

    def to_dict(self) -> dict[str, Any]:
        sample = self.sample.to_dict()
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "visit_id": self.visit_id,
            "latitude": sample["latitude"],
            "longitude": sample["longitude"],
            "accuracy": sample["accuracy"],
            "source": sample["source"],
            "confidence": sample["confidence"],
            "timestamp": sample["captured_at"],
            "created_at": self.created_at.isoformat(),
            "battery_level": self.battery_level,
            "speed": self.speed,
            "tracking_mode": self.tracking_mode,
        }


@dataclass(frozen=True)
class LocationError:
    code: ErrorCode
    message: str
    occurred_at: dt.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class ResolutionState:
    """
    Snapshot of one resolver at one point in time.

    Replaced wholesale on every transition (see
    :func:`fieldtrack.location_resolver.transition`).
    """

    status: Status = Status.IDLE
    sample: Optional[LocationSample] = None
    error_message: Optional[str] = None
    source: Optional[Source] = None
    error: Optional[LocationError] = None
    advisory: Optional[str] = None
    retry_count: int = 0
    request_id: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status is Status.LOADING
