"""aggregator.py
~~~~~~~~~~~~~~~~
Live-position view for dashboards: the most recent breadcrumb of each
requested employee.

One time-descending fetch, one pass, keep the first row seen per employee.
Whether a position is still "live" is decided by the caller with
:func:`is_active` – the aggregator itself has no notion of staleness.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable

from .breadcrumb_store import BreadcrumbStore
from .constants import STALE_AFTER_S
from .models import Breadcrumb, utcnow

LOG = logging.getLogger("aggregator")


def latest_per_employee_from(crumbs: Iterable[Breadcrumb]) -> dict[str, Breadcrumb]:
    """Single-pass dedup over *crumbs*, which must be newest first."""
    latest: dict[str, Breadcrumb] = {}
    for crumb in crumbs:
        if crumb.employee_id not in latest:
            latest[crumb.employee_id] = crumb
    return latest


class ActiveLocationAggregator:
    def __init__(self, store: BreadcrumbStore, *, trust_store_order: bool = True) -> None:
        self._store = store
        self.trust_store_order = trust_store_order

    async def latest_per_employee(self, employee_ids: Iterable[str]) -> dict[str, Breadcrumb]:
        ids = set(employee_ids)
        crumbs = await self._store.for_employees(ids)
        if not self.trust_store_order:
            crumbs = sorted(crumbs, key=lambda c: c.captured_at, reverse=True)
        latest = latest_per_employee_from(crumbs)
        LOG.debug("[active] %d/%d employees have a position", len(latest), len(ids))
        return latest


def is_active(
    crumb: Breadcrumb,
    now: dt.datetime | None = None,
    window_s: int = STALE_AFTER_S,
) -> bool:
    """True when *crumb* is no older than *window_s* seconds."""
    now = now or utcnow()
    return (now - crumb.captured_at).total_seconds() <= window_s


def format_age(ts: dt.datetime, now: dt.datetime | None = None) -> str:
    """Human-friendly age – "Just now", "3m ago", "2h ago", "1d ago"."""
    now = now or utcnow()
    minutes = int((now - ts).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
