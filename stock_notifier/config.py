"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from typing import Optional
from pathlib import Path

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


# ---- Delivery ----------------------------------------------------------------

# Page access token for the Messenger send API. Required.
PAGE_ACCESS_TOKEN: Optional[str] = _get_env("PAGE_ACCESS_TOKEN")

GRAPH_API_URL: str = _get_env("GRAPH_API_URL", "https://graph.facebook.com/v17.0/me/messages")

# ---- Feed ----------------------------------------------------------------------

# Base URL for the stock REST API. Should not include a trailing slash.
FEED_API_BASE_URL: str = _get_env("FEED_API_BASE_URL", "https://api.joshlei.com")

FEED_WS_URL: str = _get_env("FEED_WS_URL", "wss://websocket.joshlei.com/growagarden")

# Identity sent to the websocket feed as ?user_id=...
FEED_USER_ID: str = _get_env("FEED_USER_ID", "stock-notifier")

FEED_TIMEOUT_SECONDS: float = _parse_float(_get_env("FEED_TIMEOUT_SECONDS"), 10.0)

# ---- Streaming connection ------------------------------------------------------

# Reconnect delay is RECONNECT_BASE_DELAY_SECONDS * attempt number.
RECONNECT_BASE_DELAY_SECONDS: float = _parse_float(_get_env("RECONNECT_BASE_DELAY_SECONDS"), 5.0)

MAX_RECONNECT_ATTEMPTS: int = _parse_int(_get_env("MAX_RECONNECT_ATTEMPTS"), 5)

# ---- Fallback poller -----------------------------------------------------------

POLL_INTERVAL_MINUTES: int = _parse_int(_get_env("POLL_INTERVAL_MINUTES"), 5)

# Poll deadlines are aligned to the interval grid in this UTC offset (PH time).
SCHEDULE_UTC_OFFSET_HOURS: int = _parse_int(_get_env("SCHEDULE_UTC_OFFSET_HOURS"), 8)

# ---- Alert policy --------------------------------------------------------------

# Minimum time between repeat alerts for unchanged slow-restock items.
QUIESCENCE_WINDOW_MINUTES: int = _parse_int(_get_env("QUIESCENCE_WINDOW_MINUTES"), 30)

# Surface slow-restock categories alongside a firing immediate category.
BUNDLE_SLOW_RESTOCK: bool = _parse_bool(_get_env("BUNDLE_SLOW_RESTOCK", "true"), True)

# ---- User throttling ---------------------------------------------------------

# Minimum gap between two commands from the same user.
COMMAND_COOLDOWN_SECONDS: float = _parse_float(_get_env("COMMAND_COOLDOWN_SECONDS"), 2.0)

DAILY_COMMAND_LIMIT: int = _parse_int(_get_env("DAILY_COMMAND_LIMIT"), 100)

# At most MESSAGE_RATE_LIMIT commands per MESSAGE_RATE_WINDOW_SECONDS.
MESSAGE_RATE_LIMIT: int = _parse_int(_get_env("MESSAGE_RATE_LIMIT"), 5)

MESSAGE_RATE_WINDOW_SECONDS: float = _parse_float(_get_env("MESSAGE_RATE_WINDOW_SECONDS"), 60.0)

MANUAL_CHECK_COOLDOWN_MINUTES: int = _parse_int(_get_env("MANUAL_CHECK_COOLDOWN_MINUTES"), 5)

# How long a sent text is remembered for echo detection.
SENT_MESSAGE_TTL_SECONDS: float = _parse_float(_get_env("SENT_MESSAGE_TTL_SECONDS"), 60.0)

# ---- Storage & logging ---------------------------------------------------------

# Path to SQLite database.
SQLITE_DB_PATH: str = _get_env("SQLITE_DB_PATH", "subscribers.db")

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate required configuration parameters."""
    if not PAGE_ACCESS_TOKEN:
        raise RuntimeError(
            "PAGE_ACCESS_TOKEN must be set. See .env.example for details."
        )
    if not FEED_WS_URL and not FEED_API_BASE_URL:
        raise RuntimeError("At least one of FEED_WS_URL or FEED_API_BASE_URL must be set.")


__all__ = [
    # Delivery
    "PAGE_ACCESS_TOKEN",
    "GRAPH_API_URL",
    # Feed
    "FEED_API_BASE_URL",
    "FEED_WS_URL",
    "FEED_USER_ID",
    "FEED_TIMEOUT_SECONDS",
    # Streaming
    "RECONNECT_BASE_DELAY_SECONDS",
    "MAX_RECONNECT_ATTEMPTS",
    # Poller
    "POLL_INTERVAL_MINUTES",
    "SCHEDULE_UTC_OFFSET_HOURS",
    # Policy
    "QUIESCENCE_WINDOW_MINUTES",
    "BUNDLE_SLOW_RESTOCK",
    # Throttling
    "COMMAND_COOLDOWN_SECONDS",
    "DAILY_COMMAND_LIMIT",
    "MESSAGE_RATE_LIMIT",
    "MESSAGE_RATE_WINDOW_SECONDS",
    "MANUAL_CHECK_COOLDOWN_MINUTES",
    "SENT_MESSAGE_TTL_SECONDS",
    # Storage & logging
    "SQLITE_DB_PATH",
    "LOG_LEVEL",
    # Helpers
    "validate",
]
