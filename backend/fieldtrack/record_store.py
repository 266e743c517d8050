"""record_store.py
~~~~~~~~~~~~~~~~~
The row-oriented persistence boundary used by the breadcrumb store.

The production backend is a managed relational service with row-level
authorisation; all this package needs from it is

* ``insert(table, row) -> stored row``
* ``select(table, filters, order_by, ascending, limit) -> rows``

Failures surface as :class:`~fieldtrack.exceptions.RecordStoreError`.
No transactions are managed here.

Two local backends ship with the package:

* :class:`InMemoryRecordStore` – tests and ephemeral runs.
* :class:`JsonFileRecordStore` – one small JSON file per table under
  ``$PERSIST_DIR`` (defaults to ``local_data/``).
"""

from __future__ import annotations

import asyncio
import copy
import datetime as dt
import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, Sequence

from .exceptions import RecordStoreError
from .models import UTC

LOG = logging.getLogger("record_store")

Row = dict[str, Any]


class Op(str, Enum):
    EQ = "eq"
    IN = "in"
    GTE = "gte"
    LTE = "lte"


@dataclass(frozen=True)
class Filter:
    column: str
    op: Op
    value: Any

    def matches(self, row: Row) -> bool:
        current = row.get(self.column)
        if self.op is Op.EQ:
            return current == self.value
        if self.op is Op.IN:
            return current in self.value
        if current is None:
            return False
        if self.op is Op.GTE:
            return current >= self.value
        return current <= self.value


def eq(column: str, value: Any) -> Filter:
    return Filter(column, Op.EQ, value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, Op.IN, frozenset(values))


def gte(column: str, value: Any) -> Filter:
    return Filter(column, Op.GTE, value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, Op.LTE, value)


class RecordStore(Protocol):
    async def insert(self, table: str, row: Row) -> Row: ...

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Row]: ...


def _stamp_new(row: Row) -> Row:
    """Copy *row* and fill ``id``/``created_at`` the way the backend would."""
    stored = dict(row)
    stored.setdefault("id", uuid.uuid4().hex)
    stored.setdefault("created_at", dt.datetime.now(UTC).isoformat())
    return stored


def _query(
    rows: Iterable[Row],
    filters: Sequence[Filter],
    order_by: Optional[str],
    ascending: bool,
    limit: Optional[int],
) -> list[Row]:
    hits = [r for r in rows if all(f.matches(r) for f in filters)]
    if order_by is not None:
        present = [r for r in hits if r.get(order_by) is not None]
        missing = [r for r in hits if r.get(order_by) is None]
        present.sort(key=lambda r: r[order_by], reverse=not ascending)
        hits = present + missing
    if limit is not None:
        hits = hits[:limit]
    return [copy.deepcopy(r) for r in hits]


class InMemoryRecordStore:
    """Dict-of-lists backend; rows are copied in and out."""

    def __init__(self) -> None:
        self._tables: dict[str, list[Row]] = {}

    async def insert(self, table: str, row: Row) -> Row:
        stored = _stamp_new(row)
        self._tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Row]:
        return _query(self._tables.get(table, []), filters, order_by, ascending, limit)


# ── JSON-file backend ────────────────────────────────────────────────────
def _determine_dir() -> Path:
    base = Path(os.getenv("PERSIST_DIR", "local_data")).expanduser()
    base.mkdir(parents=True, exist_ok=True)
    return base


class JsonFileRecordStore:
    """
    One ``<table>.json`` file per table: ``{"rows": [...], "updated_at": …}``.

    File I/O runs in a worker thread; a process-wide lock serialises
    read-modify-write cycles so concurrent appends are never lost.
    """

    _lock = threading.Lock()

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory or _determine_dir()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _file(self, table: str) -> Path:
        return self.directory / f"{table}.json"

    def _load(self, table: str) -> list[Row]:
        path = self._file(table)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
            return list(data.get("rows", []))
        except (OSError, ValueError, AttributeError) as exc:
            LOG.error("[record_store] failed to load %s: %s", path, exc)
            raise RecordStoreError(f"cannot read table {table!r}: {exc}") from exc

    def _save(self, table: str, rows: list[Row]) -> None:
        path = self._file(table)
        payload = {"rows": rows, "updated_at": dt.datetime.now(UTC).isoformat()}
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(payload, indent=2, default=str))
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            LOG.error("[record_store] failed to save %s: %s", path, exc)
            raise RecordStoreError(f"cannot write table {table!r}: {exc}") from exc

    def _insert_sync(self, table: str, row: Row) -> Row:
        stored = _stamp_new(row)
        with self._lock:
            rows = self._load(table)
            rows.append(stored)
            self._save(table, rows)
        return stored

    def _select_sync(
        self,
        table: str,
        filters: Sequence[Filter],
        order_by: Optional[str],
        ascending: bool,
        limit: Optional[int],
    ) -> list[Row]:
        with self._lock:
            rows = self._load(table)
        return _query(rows, filters, order_by, ascending, limit)

    async def insert(self, table: str, row: Row) -> Row:
        return await asyncio.to_thread(self._insert_sync, table, row)

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Row]:
        return await asyncio.to_thread(
            self._select_sync, table, filters, order_by, ascending, limit
        )
