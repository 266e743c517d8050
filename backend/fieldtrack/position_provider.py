"""position_provider.py
~~~~~~~~~~~~~~~~~~~~~~~
Adapt the device's callback-style positioning capability into one
awaitable call that yields a :class:`LocationSample` or a
:class:`LocationError`.

* Exactly one device query per :meth:`PositionProvider.request_once`; no
  retry, no watch subscription.
* The call is bounded by ``options.timeout_ms`` even when the device never
  answers; a late answer after the timeout is dropped.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from .accuracy import classify_confidence, is_valid_coordinate
from .error_reporter import classify_device_error
from .exceptions import LocationException, LocationTimeout, PositionUnavailable, Unsupported
from .models import UTC, LocationError, LocationSample, PositionOptions, Source, utcnow

LOG = logging.getLogger("position_provider")


@dataclass(frozen=True)
class DevicePosition:
    """Raw fix as reported by the device."""

    latitude: float
    longitude: float
    accuracy: Optional[float]
    timestamp: Union[dt.datetime, float, None] = None  # datetime or epoch ms


SuccessCallback = Callable[[DevicePosition], None]
ErrorCallback = Callable[..., None]  # (code, message="")


class DeviceGeolocation(Protocol):
    """Native positioning capability (browser, mobile bridge, gpsd, …)."""

    def get_current_position(
        self,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> None: ...


def _captured_at(ts: Union[dt.datetime, float, None]) -> dt.datetime:
    if ts is None:
        return utcnow()
    if isinstance(ts, dt.datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=UTC)
    return dt.datetime.fromtimestamp(float(ts) / 1000.0, UTC)


def _to_sample(pos: DevicePosition) -> LocationSample | LocationError:
    if not is_valid_coordinate(pos.latitude, pos.longitude):
        LOG.warning(
            "[gps] device reported invalid coordinate %r, %r",
            pos.latitude,
            pos.longitude,
        )
        return PositionUnavailable("Device reported an invalid coordinate").to_error()

    accuracy = float("nan") if pos.accuracy is None else float(pos.accuracy)
    return LocationSample(
        latitude=float(pos.latitude),
        longitude=float(pos.longitude),
        accuracy=accuracy,
        source=Source.GPS,
        confidence=classify_confidence(Source.GPS, accuracy),
        captured_at=_captured_at(pos.timestamp),
        provider="device",
    )


class PositionProvider:
    """Single-shot device positioning."""

    def __init__(self, device: DeviceGeolocation | None) -> None:
        self._device = device

    @property
    def supported(self) -> bool:
        return self._device is not None

    async def request_once(
        self, options: PositionOptions | None = None
    ) -> LocationSample | LocationError:
        options = options or PositionOptions()
        if self._device is None:
            LOG.info("[gps] no positioning capability")
            return Unsupported().to_error()

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[DevicePosition | LocationError] = loop.create_future()

        def _deliver(value: DevicePosition | LocationError) -> None:
            if not fut.done():
                fut.set_result(value)

        def _on_success(position: DevicePosition) -> None:
            loop.call_soon_threadsafe(_deliver, position)

        def _on_error(code: int | str | None = None, message: str = "") -> None:
            loop.call_soon_threadsafe(_deliver, classify_device_error(code, message))

        try:
            self._device.get_current_position(_on_success, _on_error, options)
        except LocationException as exc:
            return exc.to_error()
        except Exception as exc:  # noqa: BLE001 – any device fault is "unavailable"
            LOG.warning("[gps] device query failed: %r", exc)
            return PositionUnavailable(str(exc) or None).to_error()

        try:
            outcome = await asyncio.wait_for(fut, timeout=options.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            LOG.warning("[gps] no fix within %d ms", options.timeout_ms)
            return LocationTimeout().to_error()

        if isinstance(outcome, LocationError):
            LOG.warning("[gps] %s: %s", outcome.code.value, outcome.message)
            return outcome

        sample = _to_sample(outcome)
        if isinstance(sample, LocationSample):
            LOG.info(
                "[gps] fix %.5f, %.5f ±%s m (%s)",
                sample.latitude,
                sample.longitude,
                "?" if math.isnan(sample.accuracy) else f"{sample.accuracy:.0f}",
                sample.confidence.value,
            )
        return sample
