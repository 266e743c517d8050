"""
tests/integration/conftest.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Live-service checks are opt-in per service group.

    INTEGRATION_TESTS=1            every group
    INTEGRATION_TESTS=ip           key-less IP services only
    INTEGRATION_TESTS=nominatim,keyed

Groups: ``ip`` (test_ip_services_api), ``nominatim`` (test_nominatim_api)
and ``keyed`` (Mapbox / Google refinement; also needs the matching
FIELDTRACK_MAPBOX_TOKEN / FIELDTRACK_GOOGLE_API_KEY in the environment).
Modules outside these groups are offline and always run.
"""

from __future__ import annotations

import os
import time
from typing import Generator

import pytest

GROUPS = ("ip", "nominatim", "keyed")

MODULE_GROUPS = {
    "test_ip_services_api": "ip",
    "test_nominatim_api": "nominatim",
}


def enabled_groups(raw: str | None) -> set[str]:
    """Parse INTEGRATION_TESTS into the set of enabled groups."""
    if not raw:
        return set()
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "all"):
        return set(GROUPS)
    return {part.strip() for part in value.split(",") if part.strip() in GROUPS}


def _group_of(item: pytest.Item) -> str | None:
    marker = item.get_closest_marker("keyed")
    if marker is not None:
        return "keyed"
    return MODULE_GROUPS.get(item.module.__name__.rsplit(".", 1)[-1])


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "keyed: live check against a keyed geocoding service")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    groups = enabled_groups(os.getenv("INTEGRATION_TESTS"))
    for item in items:
        if "integration" not in str(item.fspath):
            continue
        group = _group_of(item)
        if group is not None and group not in groups:
            item.add_marker(
                pytest.mark.skip(
                    reason=f"integration group {group!r} disabled "
                    f"(INTEGRATION_TESTS=1 or INTEGRATION_TESTS={group})"
                )
            )


@pytest.fixture
def rate_limiter() -> Generator[None, None, None]:
    """Pause after the test so consecutive Nominatim calls stay under 1 req/s."""
    yield
    time.sleep(1.0)


@pytest.fixture
def integration_timeout() -> float:
    """Timeout for direct HTTP calls to the IP services (seconds)."""
    return 30.0
