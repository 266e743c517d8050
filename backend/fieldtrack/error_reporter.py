"""error_reporter.py
~~~~~~~~~~~~~~~~~~~~
Turn location failures into something a field worker can act on.

Two halves:

* :func:`classify_device_error` – map the raw, device-specific failure
  (W3C numeric codes, CoreLocation messages, …) into the small
  :class:`~fieldtrack.models.ErrorCode` taxonomy.
* :func:`report_error` / :func:`report_resolution` – build an
  :class:`ErrorReport` with a title, a message and ordered remediation steps,
  in one of three presentation tiers:

  ``error``      hard failure, the user has to change a setting
  ``transient``  retry later, with a bounded back-off hint
  ``advisory``   a coordinate *was* obtained but it is approximate; never
                 rendered as an error banner
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .constants import RETRY_BASE_S, RETRY_MAX_S
from .models import (
    ErrorCode,
    LocationError,
    LocationSample,
    ResolutionState,
    Source,
    Status,
)

LOG = logging.getLogger("error_reporter")


class Tier(str, Enum):
    ERROR = "error"
    TRANSIENT = "transient"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class ErrorReport:
    tier: Tier
    title: str
    message: str
    remediation_steps: tuple[str, ...]
    retry_after_s: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "title": self.title,
            "message": self.message,
            "remediation_steps": list(self.remediation_steps),
            "retry_after_s": self.retry_after_s,
        }


# ── Device error classification ──────────────────────────────────────────
# W3C Geolocation API numeric codes
_W3C_CODES: dict[int, ErrorCode] = {
    1: ErrorCode.PERMISSION_DENIED,
    2: ErrorCode.UNAVAILABLE,
    3: ErrorCode.TIMEOUT,
}

_NAMED_CODES: dict[str, ErrorCode] = {
    "permission_denied": ErrorCode.PERMISSION_DENIED,
    "position_unavailable": ErrorCode.UNAVAILABLE,
    "unavailable": ErrorCode.UNAVAILABLE,
    "timeout": ErrorCode.TIMEOUT,
    "unsupported": ErrorCode.UNSUPPORTED,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.PERMISSION_DENIED: "Location permission denied",
    ErrorCode.UNAVAILABLE: "Location unavailable - check GPS signal",
    ErrorCode.TIMEOUT: "Location request timed out",
    ErrorCode.UNSUPPORTED: "Geolocation is not supported by this device",
}


def classify_device_error(code: int | str | None, message: str = "") -> LocationError:
    """
    Normalise a device-reported failure.

    *code* may be the W3C integer (1/2/3), its symbolic name, or ``None``.
    CoreLocation leaks through as text: ``kCLErrorLocationUnknown`` means a
    weak fix (unavailable), ``kCLErrorDenied`` a revoked permission.
    """
    text = message or ""
    if "kCLErrorDenied" in text:
        return LocationError(ErrorCode.PERMISSION_DENIED, _MESSAGES[ErrorCode.PERMISSION_DENIED])
    if "kCLErrorLocationUnknown" in text:
        return LocationError(ErrorCode.UNAVAILABLE, "GPS signal weak or unavailable")

    mapped: ErrorCode | None = None
    if isinstance(code, int) and not isinstance(code, bool):
        mapped = _W3C_CODES.get(code)
    elif isinstance(code, str):
        key = code.strip().lower()
        mapped = _NAMED_CODES.get(key)
        if mapped is None and key.isdigit():
            mapped = _W3C_CODES.get(int(key))

    if mapped is None:
        return LocationError(ErrorCode.UNAVAILABLE, "Unable to get your location")
    return LocationError(mapped, _MESSAGES[mapped])


def backoff_hint(attempt: int) -> int:
    """Seconds to wait before retry number *attempt* (0-based), capped."""
    attempt = max(0, attempt)
    return min(RETRY_BASE_S * 2 ** min(attempt, 16), RETRY_MAX_S)


# ── Reports ──────────────────────────────────────────────────────────────
_FALLBACK_STEPS = (
    "Using approximate location based on your region",
    "Enable GPS for more precise location tracking",
    "Move to an open area for better GPS signal",
)
_IP_STEPS = (
    "Location determined from your IP address (less accurate)",
    "Enable GPS for more precise location tracking",
    "Move to an open area for better GPS signal",
)


def _advisory(sample: LocationSample) -> ErrorReport:
    if sample.is_fallback:
        return ErrorReport(
            tier=Tier.ADVISORY,
            title="Location (Approximate)",
            message=(
                "Using approximate location. GPS location is preferred "
                "for accurate tracking."
            ),
            remediation_steps=_FALLBACK_STEPS,
        )
    return ErrorReport(
        tier=Tier.ADVISORY,
        title="Location (IP-based)",
        message="Using IP-based location (less accurate than GPS).",
        remediation_steps=_IP_STEPS,
    )


def report_error(
    error: LocationError,
    *,
    attempt: int = 0,
    fallback_sample: LocationSample | None = None,
) -> ErrorReport:
    """Build the user-facing report for *error*.

    ``fallback_sample`` is the last-resort coordinate that accompanied a
    ``provider_exhausted`` failure, if any; with it the failure is only an
    advisory.
    """
    code = error.code

    if code is ErrorCode.PERMISSION_DENIED:
        return ErrorReport(
            tier=Tier.ERROR,
            title="Location Access Denied",
            message=error.message,
            remediation_steps=(
                "Enable location permissions in your browser",
                "Check your device location settings",
                "Refresh the page and try again",
            ),
        )

    if code is ErrorCode.UNSUPPORTED:
        return ErrorReport(
            tier=Tier.ERROR,
            title="Location Not Supported",
            message=error.message,
            remediation_steps=(
                "Use a device or browser with location services",
                "Check that location services are enabled in device settings",
            ),
        )

    if code is ErrorCode.PROVIDER_EXHAUSTED and fallback_sample is not None:
        return _advisory(fallback_sample)

    retry_after = backoff_hint(attempt)
    if code is ErrorCode.UNAVAILABLE:
        steps: tuple[str, ...] = (
            "Move to an open area with clear sky view",
            "Check if GPS is enabled on your device",
            "Wait a few moments for GPS signal to improve",
            f"Try again in {retry_after} seconds",
        )
        title = "Location Unavailable"
    elif code is ErrorCode.TIMEOUT:
        steps = (
            "Wait a few moments for GPS signal to improve",
            f"Try again in {retry_after} seconds",
        )
        title = "Location Timed Out"
    else:
        steps = (
            "Check your internet connection",
            f"Try again in {retry_after} seconds",
            "Contact support if the issue persists",
        )
        title = "Location Error"

    return ErrorReport(
        tier=Tier.TRANSIENT,
        title=title,
        message=error.message,
        remediation_steps=steps,
        retry_after_s=retry_after,
    )


def report_resolution(state: ResolutionState) -> ErrorReport | None:
    """Report for the current resolver state, or ``None`` when nothing to show."""
    if state.status is Status.RESOLVED and state.sample is not None:
        if state.source is not Source.GPS or state.sample.is_fallback:
            return _advisory(state.sample)
        return None
    if state.status is Status.ERROR and state.error is not None:
        fallback = state.sample if state.sample and state.sample.is_fallback else None
        return report_error(
            state.error, attempt=state.retry_count, fallback_sample=fallback
        )
    return None


def log_location_error(employee_id: str, error: LocationError) -> None:
    """Record a field worker's location failure for debugging (log only)."""
    LOG.warning(
        "[location error] employee=%s code=%s message=%s at=%s",
        employee_id,
        error.code.value,
        error.message,
        error.occurred_at.isoformat(),
    )
