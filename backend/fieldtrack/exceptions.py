"""exceptions.py
~~~~~~~~~~~~~~~
Error taxonomy for location resolution and breadcrumb persistence.

Providers do not raise these for expected failures; they return the
:class:`~fieldtrack.models.LocationError` value produced by
:meth:`LocationException.to_error`. The exceptions are raised where a
failure must reach the caller (``InvalidCoordinate`` on append, store
failures, illegal state transitions).
"""

from __future__ import annotations

from typing import ClassVar, Optional

from .models import ErrorCode, LocationError


class LocationException(Exception):
    """Base class for every location failure that maps to an error code."""

    code: ClassVar[Optional[ErrorCode]] = None
    default_message: ClassVar[str] = "Unable to get your location."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_error(self) -> LocationError:
        if self.code is None:
            raise TypeError(f"{type(self).__name__} has no error code")
        return LocationError(code=self.code, message=self.message)


class PermissionDenied(LocationException):
    code = ErrorCode.PERMISSION_DENIED
    default_message = "Location access denied. Please enable location permissions."


class PositionUnavailable(LocationException):
    code = ErrorCode.UNAVAILABLE
    default_message = "Location information unavailable."


class LocationTimeout(LocationException):
    code = ErrorCode.TIMEOUT
    default_message = "Location request timed out."


class Unsupported(LocationException):
    code = ErrorCode.UNSUPPORTED
    default_message = "Geolocation is not supported by this device."


class ProviderExhausted(LocationException):
    code = ErrorCode.PROVIDER_EXHAUSTED
    default_message = "All location providers failed."


class InvalidCoordinate(LocationException, ValueError):
    """Latitude or longitude outside the valid range (or not a number)."""

    default_message = "Coordinate out of range."

    def __init__(self, latitude: float, longitude: float) -> None:
        super().__init__(
            f"Invalid coordinate lat={latitude!r} lon={longitude!r}"
        )
        self.latitude = latitude
        self.longitude = longitude


_BY_CODE: dict[ErrorCode, type[LocationException]] = {
    cls.code: cls
    for cls in (
        PermissionDenied,
        PositionUnavailable,
        LocationTimeout,
        Unsupported,
        ProviderExhausted,
    )
}


def exception_for(error: LocationError) -> LocationException:
    """Rebuild the exception matching *error* (for callers that prefer raising)."""
    return _BY_CODE[error.code](error.message)


class RecordStoreError(Exception):
    """The record store rejected or failed an insert/select."""


class InvalidTransition(RuntimeError):
    """The resolver state machine was asked for a move it does not allow."""
