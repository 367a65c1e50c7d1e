"""Configuration loaded once from environment variables (and .env)."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
load_dotenv(Path(__file__).resolve().parents[2] / ".env")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql://localhost:5432/garmin_sync")
GARMIN_EMAIL = os.environ.get("GARMIN_EMAIL", "")
GARMIN_PASSWORD = os.environ.get("GARMIN_PASSWORD", "")

# Auto-sync interval; 0 disables the scheduler
SYNC_INTERVAL_MINUTES = _int_env("SYNC_INTERVAL_MINUTES", 60)
SYNC_ACTIVITY_LIMIT = _int_env("SYNC_ACTIVITY_LIMIT", 50)
SYNC_DAYS = _int_env("SYNC_DAYS", 30)
SESSION_TTL_DAYS = _int_env("SESSION_TTL_DAYS", 7)

# HTTP behaviour of the Garmin Connect client (seconds)
GARMIN_HTTP_TIMEOUT = _float_env("GARMIN_HTTP_TIMEOUT", 30.0)
GARMIN_API_CALL_DELAY = _float_env("GARMIN_API_CALL_DELAY", 0.5)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def get_garmin_credentials() -> tuple[str, str]:
    """Get Garmin email and password from the environment."""
    return GARMIN_EMAIL, GARMIN_PASSWORD


def credentials_configured() -> bool:
    email, password = get_garmin_credentials()
    return bool(email and password)
