"""Environment-driven settings for the calendar service."""
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


# Appointment store (the clinic backend that owns persistence)
STORE_BASE_URL = os.getenv("STORE_BASE_URL", "http://localhost:5000/api").rstrip("/")
STORE_TOKEN_URL = os.getenv("STORE_TOKEN_URL", f"{STORE_BASE_URL}/oauth2/token")
STORE_CLIENT_ID = os.getenv("STORE_CLIENT_ID")
STORE_CLIENT_SECRET = os.getenv("STORE_CLIENT_SECRET")
# A static token wins over the client-credentials flow when both are set
STORE_API_TOKEN = os.getenv("STORE_API_TOKEN")
STORE_TIMEOUT = _float_env("STORE_TIMEOUT", 15.0)

# HTTP surface
CALENDAR_API_KEY = os.getenv("CALENDAR_API_KEY", "")
# clinics whose appointment caches are kept in memory at once
CALENDAR_MAX_CLINICS = _int_env("CALENDAR_MAX_CLINICS", 64)


def offline_mode() -> bool:
    """Read at call time so tests can flip it with monkeypatch."""
    return os.getenv("OFFLINE_MODE", "0") == "1"


# Grid defaults (business hours 07:00-20:00, half-hour slots, Sunday first)
CALENDAR_MIN_HOUR = _int_env("CALENDAR_MIN_HOUR", 7)
CALENDAR_MAX_HOUR = _int_env("CALENDAR_MAX_HOUR", 20)
CALENDAR_STEP_MINUTES = _int_env("CALENDAR_STEP_MINUTES", 30)
CALENDAR_WEEK_START = _int_env("CALENDAR_WEEK_START", 6)
CALENDAR_MAX_EVENTS_PER_CELL = _int_env("CALENDAR_MAX_EVENTS_PER_CELL", 3)

CALENDAR_LOG_LEVEL = os.getenv("CALENDAR_LOG_LEVEL", "INFO").upper()
