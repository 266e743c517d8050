"""
tests/test_error_reporter.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Device error classification and user-facing reports.
"""

from __future__ import annotations

import logging

import pytest

from fieldtrack.error_reporter import (
    Tier,
    backoff_hint,
    classify_device_error,
    log_location_error,
    report_error,
    report_resolution,
)
from fieldtrack.models import (
    Confidence,
    ErrorCode,
    LocationError,
    LocationSample,
    ResolutionState,
    Source,
    Status,
)


def _gps(acc: float = 8.0) -> LocationSample:
    return LocationSample(45.5, -73.56, acc, Source.GPS, Confidence.HIGH)


def _ip(*, fallback: bool = False) -> LocationSample:
    return LocationSample(45.5, -73.56, None, Source.IP, Confidence.LOW, is_fallback=fallback)


# ── classification ───────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "code, expected",
    [
        (1, ErrorCode.PERMISSION_DENIED),
        (2, ErrorCode.UNAVAILABLE),
        (3, ErrorCode.TIMEOUT),
        ("3", ErrorCode.TIMEOUT),
        ("PERMISSION_DENIED", ErrorCode.PERMISSION_DENIED),
        ("position_unavailable", ErrorCode.UNAVAILABLE),
        ("unsupported", ErrorCode.UNSUPPORTED),
    ],
)
def test_classify_known_codes(code, expected) -> None:
    assert classify_device_error(code).code is expected


@pytest.mark.parametrize("code", [None, 0, 42, "weird", True])
def test_classify_unknown_codes_fall_back_to_unavailable(code) -> None:
    err = classify_device_error(code)
    assert err.code is ErrorCode.UNAVAILABLE
    assert err.message == "Unable to get your location"


def test_corelocation_messages_win_over_code() -> None:
    weak = classify_device_error(2, "The operation couldn't be completed. (kCLErrorLocationUnknown)")
    assert weak.code is ErrorCode.UNAVAILABLE
    assert weak.message == "GPS signal weak or unavailable"

    denied = classify_device_error(2, "kCLErrorDenied")
    assert denied.code is ErrorCode.PERMISSION_DENIED


# ── back-off ─────────────────────────────────────────────────────────────
def test_backoff_hint_doubles_then_caps() -> None:
    assert [backoff_hint(n) for n in range(6)] == [2, 4, 8, 16, 30, 30]
    assert backoff_hint(-3) == 2
    assert backoff_hint(10_000) == 30


# ── reports ──────────────────────────────────────────────────────────────
def test_permission_denied_is_hard_error_with_steps() -> None:
    report = report_error(LocationError(ErrorCode.PERMISSION_DENIED, "denied"))
    assert report.tier is Tier.ERROR
    assert report.title == "Location Access Denied"
    assert report.message == "denied"
    assert report.remediation_steps[0] == "Enable location permissions in your browser"
    assert report.retry_after_s is None


def test_unsupported_is_hard_error() -> None:
    report = report_error(LocationError(ErrorCode.UNSUPPORTED, "nope"))
    assert report.tier is Tier.ERROR
    assert report.title == "Location Not Supported"


@pytest.mark.parametrize(
    "code, title",
    [
        (ErrorCode.UNAVAILABLE, "Location Unavailable"),
        (ErrorCode.TIMEOUT, "Location Timed Out"),
        (ErrorCode.PROVIDER_EXHAUSTED, "Location Error"),
    ],
)
def test_transient_reports_carry_retry_hint(code, title) -> None:
    report = report_error(LocationError(code, "x"), attempt=2)
    assert report.tier is Tier.TRANSIENT
    assert report.title == title
    assert report.retry_after_s == 8
    assert "Try again in 8 seconds" in report.remediation_steps


def test_exhausted_with_fallback_sample_is_only_advisory() -> None:
    report = report_error(
        LocationError(ErrorCode.PROVIDER_EXHAUSTED, "all failed"),
        fallback_sample=_ip(fallback=True),
    )
    assert report.tier is Tier.ADVISORY
    assert report.title == "Location (Approximate)"
    assert report.retry_after_s is None


def test_report_to_dict_is_json_friendly() -> None:
    data = report_error(LocationError(ErrorCode.TIMEOUT, "slow")).to_dict()
    assert data["tier"] == "transient"
    assert isinstance(data["remediation_steps"], list)
    assert data["retry_after_s"] == 2


# ── resolution states ────────────────────────────────────────────────────
def test_resolved_gps_needs_no_report() -> None:
    state = ResolutionState(status=Status.RESOLVED, sample=_gps(), source=Source.GPS)
    assert report_resolution(state) is None


def test_resolved_ip_is_advisory() -> None:
    state = ResolutionState(status=Status.RESOLVED, sample=_ip(), source=Source.IP)
    report = report_resolution(state)
    assert report is not None
    assert report.tier is Tier.ADVISORY
    assert report.title == "Location (IP-based)"


def test_error_state_uses_retry_count_for_backoff() -> None:
    err = LocationError(ErrorCode.TIMEOUT, "slow")
    state = ResolutionState(status=Status.ERROR, error=err, error_message="slow", retry_count=3)
    report = report_resolution(state)
    assert report is not None
    assert report.retry_after_s == 16


def test_error_state_with_fallback_sample_is_advisory() -> None:
    err = LocationError(ErrorCode.PROVIDER_EXHAUSTED, "all failed")
    state = ResolutionState(
        status=Status.ERROR, error=err, sample=_ip(fallback=True), source=Source.IP
    )
    report = report_resolution(state)
    assert report is not None
    assert report.tier is Tier.ADVISORY


@pytest.mark.parametrize("status", [Status.IDLE, Status.LOADING])
def test_idle_and_loading_have_no_report(status) -> None:
    assert report_resolution(ResolutionState(status=status)) is None


def test_log_location_error_emits_warning(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="error_reporter")
    log_location_error("emp-7", LocationError(ErrorCode.TIMEOUT, "slow"))
    assert "employee=emp-7" in caplog.text
    assert "code=timeout" in caplog.text


def test_resolved_keyed_refinement_is_advisory() -> None:
    sample = LocationSample(45.5, -73.56, None, Source.MAPBOX, Confidence.MEDIUM)
    state = ResolutionState(status=Status.RESOLVED, sample=sample, source=Source.MAPBOX)
    report = report_resolution(state)
    assert report is not None
    assert report.tier is Tier.ADVISORY
