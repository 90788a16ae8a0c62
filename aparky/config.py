"""Application configuration - single source of truth for engine constants.

Contains enums (AlertKind, PermissionResult, AppVisibility), timing constants
and the environment overrides read at import time.
Import from here instead of hardcoding values elsewhere.
"""
import os
from enum import Enum
from pathlib import Path

# Load .env if available (desktop only - not bundled in mobile builds)
try:
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent / ".env")
except ImportError:
    pass  # dotenv not available on mobile, skip loading .env


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class AlertKind(Enum):
    """Kinds of alerts the engine can arm for a parking session."""
    REMINDER = "reminder"
    EXPIRY = "expiry"


class PermissionResult(Enum):
    """State of the platform notification permission."""
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"
    NOT_REQUIRED = "not_required"  # Desktop platforms don't need runtime permission


class AppVisibility(Enum):
    """Whether the application is the active foreground process."""
    VISIBLE = "visible"
    HIDDEN = "hidden"


APP_NAME = "Aparky"

DB_PATH = Path(os.getenv("APARKY_DB_PATH", "") or "aparky.db")
LANGUAGE = os.getenv("APARKY_LANGUAGE", "") or "en"
LOG_LEVEL = os.getenv("LOG_LEVEL", "") or "INFO"

# Durable key holding the PersistedBackup JSON document
TIMER_BACKUP_KEY = "active_timers_backup"

MS_PER_MINUTE = 60_000

# Background agent registration retry interval
AGENT_RETRY_SECONDS = _env_float("APARKY_AGENT_RETRY_SECONDS", 5.0)

# How long after relaying an alert we ask the agent whether it is displayed
VERIFY_DELAY_SECONDS = _env_float("APARKY_VERIFY_DELAY_SECONDS", 2.0)

# Relay pending alerts to the background agent when the app is hidden
HANDOFF_ON_BACKGROUND = _env_bool("APARKY_HANDOFF_ON_BACKGROUND", True)

# Allow the immediate path as last resort even when the app is not in the foreground
FALLBACK_WHILE_BACKGROUNDED = _env_bool("APARKY_FALLBACK_WHILE_BACKGROUNDED", True)

# Plyer toast timeout (seconds)
TOAST_TIMEOUT_SECONDS = 10

# Delay of the scheduled half of a test alert
TEST_ALERT_DELAY_MS = 5000

# Vibration patterns (ms on/off), honored by the Android agent only
REMINDER_VIBRATE = [300, 100, 300]
EXPIRY_VIBRATE = [500, 200, 500, 200, 500]

DEFAULT_ICON = "icons/pwa-192x192.png"
DEFAULT_BADGE = "icons/pwa-64x64.png"

# Agent-side channel for parking alerts
AGENT_CHANNEL_ID = "aparky_parking_alerts"
AGENT_CHANNEL_NAME = "Parking alerts"
AGENT_CHANNEL_DESCRIPTION = "Parking reminders and expiry alerts from Aparky"

# Difference between armed handle count and state count that flags a desync
HEALTH_WARNING_DRIFT = 2

SNACK_DURATION_MS = 4000

COLORS = {
    "card": "#2d2d2d",
    "white": "white",
    "warning": "#ff9800",
    "danger": "#ff6b6b",
}
