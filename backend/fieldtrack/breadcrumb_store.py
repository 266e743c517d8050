"""breadcrumb_store.py
~~~~~~~~~~~~~~~~~~~~~~
Append-only history of employee location samples ("breadcrumbs").

* ``append`` validates the coordinate first; an out-of-range sample raises
  :class:`~fieldtrack.exceptions.InvalidCoordinate` and nothing is written.
* The stored confidence tier is recomputed from source and accuracy, never
  taken from the sample as given.
* No update or delete: history is immutable, retention is someone else's job.
* Ordering always comes from the capture timestamp, never from insertion
  order, so concurrent appends for the same employee (two open tabs) are
  simply both kept.

Timestamps are stored as fixed-width UTC ISO-8601 strings
(``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``) so the backend can compare and sort
them as plain strings.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Iterable, Literal, Optional

from dateutil.parser import isoparse

from .accuracy import classify_confidence, is_valid_coordinate
from .exceptions import InvalidCoordinate
from .models import UTC, Breadcrumb, Confidence, LocationSample, Source
from .record_store import RecordStore, eq, gte, in_, lte

LOG = logging.getLogger("breadcrumb_store")

TABLE = "gps_logs"


def to_iso(ts: dt.datetime) -> str:
    """Fixed-width UTC ISO string (naive datetimes are taken as UTC)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _accuracy_column(value: Optional[float]) -> Optional[float]:
    if value is None or math.isnan(value):
        return None
    return float(value)


def _from_row(row: dict[str, Any]) -> Breadcrumb:
    source = Source(row.get("source") or Source.GPS.value)
    accuracy = row.get("accuracy")
    confidence = row.get("confidence")
    sample = LocationSample(
        latitude=row["latitude"],
        longitude=row["longitude"],
        accuracy=accuracy,
        source=source,
        confidence=(
            Confidence(confidence)
            if confidence
            else classify_confidence(source, accuracy)
        ),
        captured_at=isoparse(row["timestamp"]),
        is_fallback=bool(row.get("is_fallback", False)),
    )
    created = row.get("created_at")
    return Breadcrumb(
        id=str(row["id"]),
        employee_id=row["employee_id"],
        visit_id=row.get("visit_id"),
        sample=sample,
        created_at=isoparse(created) if created else sample.captured_at,
        battery_level=row.get("battery_level"),
        speed=row.get("speed"),
        tracking_mode=row.get("tracking_mode") or "active",
    )


class BreadcrumbStore:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def append(
        self,
        sample: LocationSample,
        employee_id: str,
        visit_id: str | None = None,
        *,
        battery_level: float | None = None,
        speed: float | None = None,
        tracking_mode: Literal["active", "passive"] = "active",
    ) -> Breadcrumb:
        """Persist *sample* for *employee_id* (optionally tied to *visit_id*)."""
        if not is_valid_coordinate(sample.latitude, sample.longitude):
            LOG.error(
                "[breadcrumb] rejected invalid coordinate %r, %r for employee %s",
                sample.latitude,
                sample.longitude,
                employee_id,
            )
            raise InvalidCoordinate(sample.latitude, sample.longitude)

        row = {
            "employee_id": employee_id,
            "visit_id": visit_id,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "accuracy": _accuracy_column(sample.accuracy),
            "source": sample.source.value,
            "confidence": classify_confidence(sample.source, sample.accuracy).value,
            "is_fallback": sample.is_fallback,
            "timestamp": to_iso(sample.captured_at),
            "battery_level": battery_level,
            "speed": speed,
            "tracking_mode": tracking_mode,
        }
        stored = await self._store.insert(TABLE, row)
        LOG.debug("[breadcrumb] %s visit=%s stored %s", employee_id, visit_id, stored["id"])
        return _from_row(stored)

    async def range_by_employee(
        self,
        employee_id: str,
        start: dt.datetime | None = None,
        end: dt.datetime | None = None,
    ) -> list[Breadcrumb]:
        """Breadcrumbs of one employee inside ``[start, end]``, newest first."""
        filters = [eq("employee_id", employee_id)]
        if start is not None:
            filters.append(gte("timestamp", to_iso(start)))
        if end is not None:
            filters.append(lte("timestamp", to_iso(end)))
        rows = await self._store.select(
            TABLE, filters=filters, order_by="timestamp", ascending=False
        )
        return [_from_row(r) for r in rows]

    async def by_visit(self, visit_id: str) -> list[Breadcrumb]:
        """Travel path of one visit, oldest first."""
        rows = await self._store.select(
            TABLE, filters=[eq("visit_id", visit_id)], order_by="timestamp", ascending=True
        )
        return [_from_row(r) for r in rows]

    async def latest_for_employee(self, employee_id: str) -> Breadcrumb | None:
        rows = await self._store.select(
            TABLE,
            filters=[eq("employee_id", employee_id)],
            order_by="timestamp",
            ascending=False,
            limit=1,
        )
        return _from_row(rows[0]) if rows else None

    async def for_employees(self, employee_ids: Iterable[str]) -> list[Breadcrumb]:
        """Every breadcrumb of the given employees, newest first."""
        ids = set(employee_ids)
        if not ids:
            return []
        rows = await self._store.select(
            TABLE, filters=[in_("employee_id", ids)], order_by="timestamp", ascending=False
        )
        return [_from_row(r) for r in rows]
