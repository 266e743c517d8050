"""
api_logging.py
~~~~~~~~~~~~~~
Issue one outbound HTTP request through an ``httpx.AsyncClient`` and emit
**one concise log line** for it on the ``extapi`` logger.

Usage example
-------------
>>> async with httpx.AsyncClient(timeout=5) as cli:
...     resp = await logged_get(cli, "https://ipinfo.io/json", label="ipinfo")
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

LOG = logging.getLogger("extapi")


def _elapsed_ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


async def logged_get(
    client: httpx.AsyncClient,
    url: str,
    *,
    label: str | None = None,
    raise_for_status: bool = False,
    **kwargs: Any,
) -> httpx.Response:
    """
    ``GET`` *url* and log verb, label, status and latency.

    Parameters
    ----------
    client:
        Open ``httpx.AsyncClient``; its timeout bounds the request.
    label:
        Short provider name shown in the log line (defaults to the URL host).
    raise_for_status:
        *True* ⇒ any 4xx/5xx is re-raised as ``httpx.HTTPStatusError``.
        *False* ⇒ the caller inspects ``status_code`` itself.

    Notes
    -----
    * Timeouts are logged at *WARNING* as ``TIMEOUT`` and re-raised as
      ``httpx.TimeoutException`` so callers can tell them apart.
    * Other transport failures are logged as ``FAIL`` and re-raised.
    """
    tag = label or httpx.URL(url).host
    t0 = time.perf_counter()
    try:
        response = await client.get(url, **kwargs)
    except httpx.TimeoutException:
        LOG.warning("TIMEOUT GET [%s] %s %.0f ms", tag, url, _elapsed_ms(t0))
        raise
    except Exception as exc:
        LOG.warning("FAIL GET [%s] %s %.0f ms %s", tag, url, _elapsed_ms(t0), exc)
        raise

    code = response.status_code
    latency_ms = _elapsed_ms(t0)
    if code >= 400:
        LOG.warning("GET [%s] %s → %s (%.0f ms)", tag, url, code, latency_ms)
    else:
        LOG.info("GET [%s] %s → %s (%.0f ms)", tag, url, code, latency_ms)

    if raise_for_status:
        response.raise_for_status()
    return response


__all__ = ["logged_get"]
