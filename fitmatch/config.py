"""Central configuration for the FitMatch core.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Deployment-specific values are read from environment
variables (optionally via a local `.env`).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Values from a local .env (current directory or any parent) never override
# variables already set in the environment.
load_dotenv()


# ---------------------------------------------------------------------------
# Backend settings
# ---------------------------------------------------------------------------
# Base URL of the persistence/realtime REST service.
BACKEND_BASE_URL = os.getenv("FITMATCH_BACKEND_URL", "http://localhost:8000/api")

# Optional bearer token forwarded to the backend. Do not hardcode secrets.
BACKEND_API_TOKEN = os.getenv("FITMATCH_BACKEND_TOKEN", "")

# When enabled, the app runs against the in-process authoritative backend
# instead of the REST service. Useful for demos and deterministic runs.
OFFLINE_MODE = _env_bool("FITMATCH_OFFLINE_MODE", False)

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)

# BACKEND_MAX_RETRIES covers network failures, 429 and 5xx responses.
BACKEND_MAX_RETRIES = _env_int("BACKEND_MAX_RETRIES", 3)
# BACKEND_BACKOFF_MAX_SECONDS caps the exponential backoff per attempt.
BACKEND_BACKOFF_MAX_SECONDS = _env_float("BACKEND_BACKOFF_MAX_SECONDS", 4.0)

# Completed write operations remembered for replay of retried requests.
IDEMPOTENCY_CACHE_SIZE = _env_int("IDEMPOTENCY_CACHE_SIZE", 4096)
IDEMPOTENCY_TTL_SECONDS = _env_int("IDEMPOTENCY_TTL_SECONDS", 24 * 3600)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------
# Search radius used when the user has not set a personal view radius.
DEFAULT_VIEW_RADIUS_KM = _env_float("DEFAULT_VIEW_RADIUS_KM", 5.0)

# Number of derived views kept per engine (keyed by store version and inputs).
MATCHING_CACHE_SIZE = _env_int("MATCHING_CACHE_SIZE", 64)


# ---------------------------------------------------------------------------
# Location & geocoding
# ---------------------------------------------------------------------------
# Maximum wait for a device position before falling back to the last known one.
LOCATION_TIMEOUT_SECONDS = _env_float("LOCATION_TIMEOUT_SECONDS", 10.0)

# Nominatim-compatible geocoding endpoint.
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "fitmatch/0.1")
GEOCODER_RESULT_LIMIT = _env_int("GEOCODER_RESULT_LIMIT", 5)

# Geocoding answers rarely change; cache them to spare the public service.
GEOCODE_CACHE_SIZE = _env_int("GEOCODE_CACHE_SIZE", 256)
GEOCODE_CACHE_TTL_SECONDS = _env_int("GEOCODE_CACHE_TTL_SECONDS", 6 * 3600)


# ---------------------------------------------------------------------------
# Chat & notifications
# ---------------------------------------------------------------------------
# Interval for refetch-based chat synchronisation and polled subscriptions.
CHAT_POLL_INTERVAL_SECONDS = _env_float("CHAT_POLL_INTERVAL_SECONDS", 5.0)

# Toasts disappear after this many seconds.
TOAST_TTL_SECONDS = _env_float("TOAST_TTL_SECONDS", 5.0)
TOAST_MAX_ACTIVE = _env_int("TOAST_MAX_ACTIVE", 20)
