"""
tests/test_api_logging.py
~~~~~~~~~~~~~~~~~~~~~~~~~
Validate `api_logging.logged_get()` behaviour for its main branches:
HTTP 200, HTTP 404, HTTP 500, timeout and transport failure.

We inject a *toy* client object whose `.get()` returns a pre-canned
``httpx.Response`` (tied to a dummy `httpx.Request`) so that
`raise_for_status()` raises the correct exception type.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import pytest

from fieldtrack.api_logging import logged_get

URL = "https://x.test/json"


class _ToyAsyncClient:
    """Minimal async stand-in for ``httpx.AsyncClient``."""

    def __init__(self, response: httpx.Response | None = None, exc: Exception | None = None) -> None:
        self._resp = response
        self._exc = exc

    # pylint: disable=unused-argument
    async def get(self, url: str, *a: Any, **k: Any) -> httpx.Response:
        if self._exc is not None:
            raise self._exc
        return self._resp


def _response(status: int) -> httpx.Response:
    # Build a dummy httpx.Request so that Response.raise_for_status() works.
    dummy_req = httpx.Request("GET", URL)
    return httpx.Response(status_code=status, content=b"{}", request=dummy_req)


@pytest.mark.parametrize(
    "status, expect_level",
    [
        (200, logging.INFO),
        (404, logging.WARNING),
        (500, logging.WARNING),
    ],
)
@pytest.mark.asyncio
async def test_logged_get_levels(
    caplog: pytest.LogCaptureFixture,
    status: int,
    expect_level: int,
) -> None:
    """Status is left to the caller unless ``raise_for_status`` is set."""
    caplog.set_level(logging.DEBUG, logger="extapi")

    resp = await logged_get(_ToyAsyncClient(_response(status)), URL, label="toy")

    assert resp.status_code == status
    # exactly one log record should have been emitted
    (rec,) = caplog.records
    assert rec.levelno == expect_level
    assert "[toy]" in rec.getMessage()


@pytest.mark.asyncio
async def test_raise_for_status(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="extapi")
    with pytest.raises(httpx.HTTPStatusError):
        await logged_get(_ToyAsyncClient(_response(503)), URL, raise_for_status=True)
    assert "x.test" in caplog.records[0].getMessage()


@pytest.mark.asyncio
async def test_timeout_logged_and_reraised(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="extapi")
    toy = _ToyAsyncClient(exc=httpx.ReadTimeout("slow"))

    with pytest.raises(httpx.TimeoutException):
        await logged_get(toy, URL)

    (rec,) = caplog.records
    assert rec.levelno == logging.WARNING
    assert rec.getMessage().startswith("TIMEOUT")


@pytest.mark.asyncio
async def test_transport_failure_logged_and_reraised(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="extapi")
    toy = _ToyAsyncClient(exc=httpx.ConnectError("refused"))

    with pytest.raises(httpx.ConnectError):
        await logged_get(toy, URL)

    (rec,) = caplog.records
    assert rec.getMessage().startswith("FAIL")
