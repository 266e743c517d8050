"""
tests/conftest.py
~~~~~~~~~~~~~~~~~
Global pytest fixtures.

* The HTTP app is pointed at an in-memory record store before it is
  imported, and every test gets a fresh one, so nothing is written under
  ``local_data/``.
* ``fake_device`` builds a scripted stand-in for the native positioning
  capability.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

os.environ.setdefault("FIELDTRACK_STORE", "memory")

pytest_plugins = ["pytest_asyncio"]


class FakeDevice:
    """
    Scripted positioning capability.

    Each call consumes the next outcome (the last one repeats):

    * ``DevicePosition``      → success callback
    * ``(code, message)``     → error callback
    * ``None``                → never answers (exercises the timeout)
    """

    def __init__(self, *outcomes: Any) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0
        self.options: list[Any] = []

    def get_current_position(self, on_success, on_error, options) -> None:
        self.calls += 1
        self.options.append(options)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if outcome is None:
            return
        if isinstance(outcome, tuple):
            on_error(*outcome)
        else:
            on_success(outcome)


@pytest.fixture
def fake_device():
    return FakeDevice


@pytest.fixture(autouse=True)
def isolate_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Fresh in-memory store for the HTTP app, PERSIST_DIR in tmp, no API keys."""
    monkeypatch.setenv("PERSIST_DIR", str(tmp_path / "persist"))

    from fieldtrack import constants

    # Keyed refinement stages stay off unless a test configures them.
    monkeypatch.setattr(constants, "MAPBOX_TOKEN", None)
    monkeypatch.setattr(constants, "GOOGLE_API_KEY", None)

    from fieldtrack import main
    from fieldtrack.aggregator import ActiveLocationAggregator
    from fieldtrack.breadcrumb_store import BreadcrumbStore
    from fieldtrack.record_store import InMemoryRecordStore

    store = InMemoryRecordStore()
    crumbs = BreadcrumbStore(store)
    monkeypatch.setattr(main, "STORE", store)
    monkeypatch.setattr(main, "BREADCRUMBS", crumbs)
    monkeypatch.setattr(main, "AGGREGATOR", ActiveLocationAggregator(crumbs))
