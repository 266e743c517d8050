# backend/fieldtrack/constants.py

"""
Global constants used across modules: the User-Agent sent to every
external lookup service, default timeouts and the env-driven settings.
"""

from __future__ import annotations

import os
from typing import Final

USER_AGENT: Final = "fieldtrack/0.4 (+https://mondeneigeur.app/about)"

# ── Device positioning defaults ───────────────────────────────────────────
DEVICE_HIGH_ACCURACY: Final = True
DEVICE_TIMEOUT_MS: Final = 10_000
DEVICE_MAX_AGE_MS: Final = 60_000

# ── External lookups ──────────────────────────────────────────────────────
IP_TIMEOUT_S = float(os.getenv("FIELDTRACK_IP_TIMEOUT_S", "5"))
GEOCODE_TIMEOUT_S = float(os.getenv("FIELDTRACK_GEOCODE_TIMEOUT_S", "10"))

# Optional keyed services that refine an IP fix; unset → stage skipped.
MAPBOX_TOKEN = os.getenv("FIELDTRACK_MAPBOX_TOKEN") or None
GOOGLE_API_KEY = os.getenv("FIELDTRACK_GOOGLE_API_KEY") or None

# Last-resort coordinate handed out when every IP service fails (Montréal).
DEFAULT_LATITUDE: Final = 45.5017
DEFAULT_LONGITUDE: Final = -73.5673

# ── Confidence tiers (metres) ─────────────────────────────────────────────
HIGH_ACCURACY_M: Final = 10.0
MEDIUM_ACCURACY_M: Final = 50.0

# ── Field tracking ────────────────────────────────────────────────────────
TRACKING_MIN_INTERVAL_S: Final = 15.0
TRACKING_MAX_INTERVAL_S: Final = 60.0
TRACKING_INTERVAL_S = float(os.getenv("FIELDTRACK_TRACKING_INTERVAL_S", "30"))

# Dashboards treat a worker as active when the last breadcrumb is this fresh.
STALE_AFTER_S = int(os.getenv("FIELDTRACK_STALE_AFTER_S", "300"))

# Retry hints for transient failures
RETRY_BASE_S: Final = 2
RETRY_MAX_S: Final = 30
