"""
main.py – FastAPI entry point
=============================

Thin HTTP surface over the breadcrumb store for the two kinds of client:

* field devices push breadcrumbs (``POST /breadcrumbs``) and ask for a
  remediation report when their own resolution failed
  (``POST /location/report``);
* dashboards read history, visit paths and live positions.

Location *resolution* itself runs on the device (see
:mod:`fieldtrack.location_resolver`); a server-side GPS/IP lookup would
locate the server, not the worker.
"""

from __future__ import annotations

# ─── Std-lib / third-party ────────────────────────────────────────────
import datetime as dt
import logging
import os
import sys
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# ─── Project modules ──────────────────────────────────────────────────
from .accuracy import classify_confidence
from .aggregator import ActiveLocationAggregator, format_age, is_active
from .breadcrumb_store import BreadcrumbStore
from .constants import STALE_AFTER_S
from .error_reporter import report_error
from .exceptions import InvalidCoordinate, RecordStoreError
from .models import ErrorCode, LocationError, LocationSample, Source, utcnow
from .record_store import InMemoryRecordStore, JsonFileRecordStore, RecordStore
from .reverse_geocode_service import ReverseGeocoder

# ─── Logging ──────────────────────────────────────────────────────────
LOG = logging.getLogger("api")

_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(logging.Formatter("%(levelname)s:     %(name)s - %(message)s"))
for _name in (
    "api",
    "extapi",
    "breadcrumb_store",
    "record_store",
    "ip_location_service",
    "reverse_geocode_service",
    "error_reporter",
    "tracking",
):
    _logger = logging.getLogger(_name)
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------
load_dotenv()

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "FIELDTRACK_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",")
    if o.strip()
]


def _build_store() -> RecordStore:
    if os.getenv("FIELDTRACK_STORE", "json").lower() == "memory":
        return InMemoryRecordStore()
    return JsonFileRecordStore()


STORE: RecordStore = _build_store()
BREADCRUMBS = BreadcrumbStore(STORE)
AGGREGATOR = ActiveLocationAggregator(BREADCRUMBS)
GEOCODER = ReverseGeocoder()

limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------
class BreadcrumbIn(BaseModel):
    employee_id: str
    visit_id: Optional[str] = None
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    source: Source = Source.GPS
    timestamp: Optional[dt.datetime] = None
    battery_level: Optional[float] = None
    speed: Optional[float] = None
    tracking_mode: Literal["active", "passive"] = "active"


class ErrorIn(BaseModel):
    code: ErrorCode
    message: str = ""
    attempt: int = 0
    fallback_latitude: Optional[float] = None
    fallback_longitude: Optional[float] = None


# ---------------------------------------------------------------------
# FastAPI instance & middleware
# ---------------------------------------------------------------------
app = FastAPI(title="fieldtrack")
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Return 429 when rate limit is exceeded."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
    )


@app.exception_handler(InvalidCoordinate)
async def invalid_coordinate_handler(request: Request, exc: InvalidCoordinate):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(RecordStoreError)
async def record_store_handler(request: Request, exc: RecordStoreError):
    LOG.error("[api] record store failure: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Record store unavailable"})


# Health check --------------------------------------------------------
@app.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> PlainTextResponse:
    """Return HTTP 200 with body “ok” if the app is up."""
    return PlainTextResponse("ok", status_code=200)


# ---------------------------------------------------------------------
# Breadcrumbs
# ---------------------------------------------------------------------
@app.post("/breadcrumbs", status_code=201)
@limiter.limit("600/hour")
async def post_breadcrumb(body: BreadcrumbIn, request: Request) -> dict[str, Any]:
    """Append one breadcrumb (manual capture or a tracking tick)."""
    accuracy = body.accuracy if body.source is Source.GPS else None
    sample = LocationSample(
        latitude=body.latitude,
        longitude=body.longitude,
        accuracy=accuracy,
        source=body.source,
        confidence=classify_confidence(body.source, accuracy),
        captured_at=body.timestamp or utcnow(),
    )
    crumb = await BREADCRUMBS.append(
        sample,
        body.employee_id,
        body.visit_id,
        battery_level=body.battery_level,
        speed=body.speed,
        tracking_mode=body.tracking_mode,
    )
    return crumb.to_dict()


@app.get("/employees/{employee_id}/breadcrumbs")
async def employee_breadcrumbs(
    employee_id: str,
    start: Optional[dt.datetime] = Query(None),
    end: Optional[dt.datetime] = Query(None),
) -> list[dict[str, Any]]:
    """Location history of one employee, newest first."""
    crumbs = await BREADCRUMBS.range_by_employee(employee_id, start, end)
    return [c.to_dict() for c in crumbs]


@app.get("/employees/{employee_id}/location")
async def employee_location(employee_id: str) -> dict[str, Any]:
    crumb = await BREADCRUMBS.latest_for_employee(employee_id)
    if crumb is None:
        raise HTTPException(status_code=404, detail="No location recorded")
    return {**crumb.to_dict(), "active": is_active(crumb), "age": format_age(crumb.captured_at)}


@app.get("/visits/{visit_id}/breadcrumbs")
async def visit_breadcrumbs(visit_id: str) -> list[dict[str, Any]]:
    """Travel path of one visit, oldest first."""
    return [c.to_dict() for c in await BREADCRUMBS.by_visit(visit_id)]


@app.get("/locations/active")
async def active_locations(
    employee_id: list[str] = Query([]),
    window_s: int = Query(STALE_AFTER_S, ge=0),
) -> list[dict[str, Any]]:
    """Latest position of every requested employee, flagged live or stale."""
    latest = await AGGREGATOR.latest_per_employee(employee_id)
    now = utcnow()
    return [
        {
            **crumb.to_dict(),
            "active": is_active(crumb, now, window_s),
            "age": format_age(crumb.captured_at, now),
        }
        for crumb in latest.values()
    ]


# ---------------------------------------------------------------------
# Enrichment & reporting
# ---------------------------------------------------------------------
@app.get("/geocode/reverse")
@limiter.limit("60/minute")
async def reverse_geocode(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
) -> dict[str, Any]:
    """Place name for a coordinate; ``name`` is null when unknown."""
    return {"lat": lat, "lon": lon, "name": await GEOCODER.lookup(lat, lon)}


@app.post("/location/report")
async def location_report(body: ErrorIn) -> dict[str, Any]:
    """Title, message and remediation steps for a device-side failure."""
    fallback = None
    if body.fallback_latitude is not None and body.fallback_longitude is not None:
        fallback = LocationSample(
            latitude=body.fallback_latitude,
            longitude=body.fallback_longitude,
            accuracy=None,
            source=Source.IP,
            confidence=classify_confidence(Source.IP, None),
            is_fallback=True,
        )
    error = LocationError(code=body.code, message=body.message or body.code.value)
    return report_error(error, attempt=body.attempt, fallback_sample=fallback).to_dict()
