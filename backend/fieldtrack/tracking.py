"""tracking.py
~~~~~~~~~~~~~~
Periodic breadcrumb capture while a service visit is in progress.

Tracking is a scheduled single-shot capture every ``interval_s`` seconds
(clamped to 15–60 s), not a long-lived device subscription. The task that
does it is owned by a :class:`TrackingSession`; the session is stopped on
visit completion, cancellation, teardown or error, and ``stop`` always
releases the task.

Per-tick failure policy:

* device error (denied, timeout, …) → logged, tick skipped, loop continues
* record store failure              → logged, tick skipped, loop continues
* ``InvalidCoordinate``             → loop stops; re-raised from ``stop()``
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .breadcrumb_store import BreadcrumbStore
from .constants import (
    TRACKING_INTERVAL_S,
    TRACKING_MAX_INTERVAL_S,
    TRACKING_MIN_INTERVAL_S,
)
from .error_reporter import log_location_error
from .exceptions import RecordStoreError
from .models import Breadcrumb, LocationError, PositionOptions
from .position_provider import PositionProvider

LOG = logging.getLogger("tracking")

# Tracking tolerates slightly older fixes than an interactive request.
TRACKING_OPTIONS = PositionOptions(high_accuracy=True, timeout_ms=10_000, max_age_ms=30_000)


def clamp_interval(seconds: float) -> float:
    return max(TRACKING_MIN_INTERVAL_S, min(TRACKING_MAX_INTERVAL_S, float(seconds)))


class TrackingSession:
    """Capture loop for one employee on one visit."""

    def __init__(
        self,
        position: PositionProvider,
        store: BreadcrumbStore,
        employee_id: str,
        visit_id: str | None = None,
        *,
        interval_s: float = TRACKING_INTERVAL_S,
        options: PositionOptions = TRACKING_OPTIONS,
        on_error: Optional[Callable[[LocationError], None]] = None,
    ) -> None:
        self._position = position
        self._store = store
        self.employee_id = employee_id
        self.visit_id = visit_id
        self.interval_s = clamp_interval(interval_s)
        self.options = options
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self.captured = 0
        self.failed = 0
        self.last_breadcrumb: Breadcrumb | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _tick(self) -> None:
        outcome = await self._position.request_once(self.options)
        if isinstance(outcome, LocationError):
            self.failed += 1
            log_location_error(self.employee_id, outcome)
            if self._on_error is not None:
                self._on_error(outcome)
            return

        try:
            crumb = await self._store.append(outcome, self.employee_id, self.visit_id)
        except RecordStoreError as exc:
            self.failed += 1
            LOG.warning("[tracking] %s: store failed, sample dropped: %s", self.employee_id, exc)
            return

        self.captured += 1
        self.last_breadcrumb = crumb

    async def _run(self) -> None:
        LOG.info(
            "[tracking] start employee=%s visit=%s every %.0f s",
            self.employee_id,
            self.visit_id,
            self.interval_s,
        )
        while True:
            await self._tick()
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        """Start capturing (first capture immediately); no-op when running."""
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"tracking:{self.employee_id}:{self.visit_id}"
        )
        self._task.add_done_callback(self._report_failure)

    def _report_failure(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error(
                "[tracking] loop for employee=%s visit=%s stopped: %s",
                self.employee_id,
                self.visit_id,
                exc,
            )

    async def stop(self) -> None:
        """Cancel the loop and wait for it; re-raises a loop failure."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            LOG.info(
                "[tracking] stop employee=%s visit=%s captured=%d failed=%d",
                self.employee_id,
                self.visit_id,
                self.captured,
                self.failed,
            )

    async def __aenter__(self) -> "TrackingSession":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()


class TrackingRegistry:
    """One tracking session per in-progress visit."""

    def __init__(
        self,
        position: PositionProvider,
        store: BreadcrumbStore,
        *,
        interval_s: float = TRACKING_INTERVAL_S,
    ) -> None:
        self._position = position
        self._store = store
        self.interval_s = interval_s
        self._sessions: dict[str, TrackingSession] = {}

    def active_visits(self) -> list[str]:
        return [vid for vid, s in self._sessions.items() if s.running]

    def session(self, visit_id: str) -> TrackingSession | None:
        return self._sessions.get(visit_id)

    async def start_visit(self, visit_id: str, employee_id: str) -> TrackingSession:
        await self._stop(visit_id)
        session = TrackingSession(
            self._position,
            self._store,
            employee_id,
            visit_id,
            interval_s=self.interval_s,
        )
        self._sessions[visit_id] = session
        session.start()
        return session

    async def _stop(self, visit_id: str) -> None:
        session = self._sessions.pop(visit_id, None)
        if session is not None:
            await session.stop()

    async def complete_visit(self, visit_id: str) -> None:
        await self._stop(visit_id)

    async def cancel_visit(self, visit_id: str) -> None:
        await self._stop(visit_id)

    async def aclose(self) -> None:
        """Stop every session; the first loop failure is re-raised afterwards."""
        first: BaseException | None = None
        for visit_id in list(self._sessions):
            try:
                await self._stop(visit_id)
            except Exception as exc:  # noqa: BLE001 – keep releasing the others
                LOG.error("[tracking] visit %s ended with %s", visit_id, exc)
                first = first or exc
        if first is not None:
            raise first

    async def __aenter__(self) -> "TrackingRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
