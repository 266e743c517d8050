"""location_resolver.py
~~~~~~~~~~~~~~~~~~~~~~~
Resolve "where is this device right now" through the fallback chain

    device GPS  →  IP geolocation  →  (last-resort default, flagged)

and expose the progress as a :class:`~fieldtrack.models.ResolutionState`.

State machine
-------------
::

    idle ──start──▶ loading ──succeeded──▶ resolved
                      │  ▲                    │
                      │  └───────start────────┤
                      └──failed──▶ error ─────┘

* ``start`` while ``loading`` restarts the sequence (no queueing).
* Results carry the id of the request that produced them; a result whose
  id is not the newest one is discarded (last request wins).
* ``clear_error`` only wipes ``error_message``; the status is kept.

All moves go through the pure :func:`transition` function so every state
is reachable in tests without a device or network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from .exceptions import InvalidTransition, PositionUnavailable, ProviderExhausted
from .ip_location_service import IpLocationProvider
from .models import (
    LocationError,
    LocationSample,
    PositionOptions,
    ResolutionState,
    Status,
)
from .position_provider import PositionProvider
from .reverse_geocode_service import ReverseGeocoder

LOG = logging.getLogger("location_resolver")

IP_ADVISORY = "Using IP-based location (less accurate than GPS)"
DEFAULT_ADVISORY = (
    "Using default location (approximate); GPS and IP-based lookups failed"
)


# ── Events ───────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Started:
    request_id: int


@dataclass(frozen=True)
class Succeeded:
    request_id: int
    sample: LocationSample
    advisory: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    request_id: int
    error: LocationError
    sample: Optional[LocationSample] = None
    advisory: Optional[str] = None


@dataclass(frozen=True)
class ErrorCleared:
    pass


@dataclass(frozen=True)
class RetryCountReset:
    pass


Event = Union[Started, Succeeded, Failed, ErrorCleared, RetryCountReset]


def transition(state: ResolutionState, event: Event) -> ResolutionState:
    """Return the state that follows *state* on *event*.

    Raises :class:`InvalidTransition` for a result arriving while nothing is
    loading. A result from a superseded request returns *state* unchanged.
    """
    if isinstance(event, Started):
        retry = state.retry_count + (
            1 if state.status in (Status.RESOLVED, Status.ERROR) else 0
        )
        return ResolutionState(
            status=Status.LOADING, retry_count=retry, request_id=event.request_id
        )

    if isinstance(event, (Succeeded, Failed)):
        if event.request_id != state.request_id:
            return state
        if state.status is not Status.LOADING:
            raise InvalidTransition(
                f"{type(event).__name__} while {state.status.value}"
            )
        if isinstance(event, Succeeded):
            return ResolutionState(
                status=Status.RESOLVED,
                sample=event.sample,
                source=event.sample.source,
                advisory=event.advisory,
                retry_count=state.retry_count,
                request_id=state.request_id,
            )
        return ResolutionState(
            status=Status.ERROR,
            sample=event.sample,
            error_message=event.error.message,
            source=event.sample.source if event.sample else None,
            error=event.error,
            advisory=event.advisory,
            retry_count=state.retry_count,
            request_id=state.request_id,
        )

    if isinstance(event, ErrorCleared):
        return replace(state, error_message=None)

    if isinstance(event, RetryCountReset):
        return replace(state, retry_count=0)

    raise InvalidTransition(f"unknown event {event!r}")


Listener = Callable[[ResolutionState], None]


class LocationResolver:
    """Owns one :class:`ResolutionState` and drives it through the chain."""

    def __init__(
        self,
        position: PositionProvider,
        ip: IpLocationProvider | None = None,
        *,
        options: PositionOptions | None = None,
        enable_ip_fallback: bool = True,
        geocoder: ReverseGeocoder | None = None,
    ) -> None:
        self._position = position
        self._ip = ip
        self.options = options or PositionOptions()
        self.enable_ip_fallback = enable_ip_fallback
        self._geocoder = geocoder
        self._state = ResolutionState()
        self._last_request = 0
        self._listeners: list[Listener] = []

    # ── observation ──────────────────────────────────────────────────────
    @property
    def state(self) -> ResolutionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* on every state change; returns an unsubscribe hook."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _apply(self, event: Event) -> ResolutionState:
        new = transition(self._state, event)
        if new is not self._state:
            self._state = new
            for listener in list(self._listeners):
                listener(new)
        return self._state

    # ── commands ─────────────────────────────────────────────────────────
    def clear_error(self) -> None:
        self._apply(ErrorCleared())

    def reset_retry_count(self) -> None:
        self._apply(RetryCountReset())

    async def _enrich(self, request_id: int, sample: LocationSample) -> LocationSample:
        if self._geocoder is None or request_id != self._last_request:
            return sample
        try:
            name = await self._geocoder.lookup(sample.latitude, sample.longitude)
        except Exception as exc:  # noqa: BLE001 – the place name is optional
            LOG.warning("[resolve #%d] place-name lookup failed: %r", request_id, exc)
            return sample
        return replace(sample, place_name=name) if name else sample

    async def resolve(self, options: PositionOptions | None = None) -> ResolutionState:
        """Run the fallback chain once; returns the state after this request.

        When a newer call started meanwhile, its state is returned instead
        and this call's outcome is dropped.
        """
        self._last_request += 1
        request_id = self._last_request
        self._apply(Started(request_id))

        try:
            outcome = await self._position.request_once(options or self.options)
        except Exception as exc:  # noqa: BLE001 – a faulty provider is a GPS failure
            LOG.warning("[resolve #%d] position provider raised %r", request_id, exc)
            outcome = PositionUnavailable(str(exc) or None).to_error()
        if isinstance(outcome, LocationSample):
            sample = await self._enrich(request_id, outcome)
            return self._apply(Succeeded(request_id, sample))

        gps_error = outcome
        if not (self.enable_ip_fallback and self._ip is not None):
            LOG.info("[resolve #%d] GPS failed (%s), no fallback", request_id, gps_error.code.value)
            return self._apply(Failed(request_id, gps_error))

        if request_id != self._last_request:
            return self._state

        LOG.info("[resolve #%d] GPS failed (%s), trying IP", request_id, gps_error.code.value)
        try:
            ip_outcome = await self._ip.resolve()
        except Exception as exc:  # noqa: BLE001 – a faulty provider is an IP failure
            LOG.warning("[resolve #%d] IP provider raised %r", request_id, exc)
            ip_outcome = ProviderExhausted(str(exc) or None).to_error()

        if isinstance(ip_outcome, LocationSample) and not ip_outcome.is_fallback:
            sample = await self._enrich(request_id, ip_outcome)
            return self._apply(Succeeded(request_id, sample, advisory=IP_ADVISORY))

        error = ProviderExhausted(
            f"{gps_error.message} IP-based location also failed."
        ).to_error()
        if isinstance(ip_outcome, LocationSample):
            return self._apply(
                Failed(request_id, error, sample=ip_outcome, advisory=DEFAULT_ADVISORY)
            )
        return self._apply(Failed(request_id, error))

    async def retry(self) -> ResolutionState:
        return await self.resolve()
