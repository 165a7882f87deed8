#!/usr/bin/env python3
"""
Doorlock Hub configuration - all constants and environment variables.
"""

import os

# ============================================================================
# Helpers
# ============================================================================


def _get_int_env(name: str, default: int) -> int:
    """Return an int env variable with a safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = str(raw).strip()
    if raw == "" or raw.lower() == "null":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """Return a float env variable with a safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = str(raw).strip()
    if raw == "" or raw.lower() == "null":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _parse_floors(raw: str) -> list[int]:
    """Parse a comma separated floor list, skipping non-numeric items."""
    floors: list[int] = []
    for item in raw.split(","):
        item = item.strip()
        try:
            floors.append(int(item))
        except ValueError:
            continue
    return floors


# ============================================================================
# Site Configuration
# ============================================================================
SITE_TZ = os.getenv("SITE_TZ", "Asia/Jakarta")
FLOORS = _parse_floors(os.getenv("FLOORS", "1,2,3,4"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ============================================================================
# MQTT Configuration
# ============================================================================
MQTT_HOST = os.getenv("MQTT_HOST", "gatevans.com")
MQTT_PORT = _get_int_env("MQTT_PORT", 1883)
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")
MQTT_CLIENT_ID = os.getenv("MQTT_CLIENT_ID", "doorlock_hub")
MQTT_TOPIC_PREFIX = os.getenv("MQTT_TOPIC_PREFIX", "jatinegara")
MQTT_FLOOR_SEGMENT = os.getenv("MQTT_FLOOR_SEGMENT", "floor")  # some sites use "lantai"
MQTT_COMMAND_QOS = 0  # commands are fire & forget, devices ACK on status
MQTT_CONNECT_TIMEOUT = _get_int_env("MQTT_CONNECT_TIMEOUT", 10)
MQTT_HEALTH_CHECK_INTERVAL = _get_int_env("MQTT_HEALTH_CHECK_INTERVAL", 30)
MQTT_PUBLISH_LOG_EVERY = max(1, _get_int_env("MQTT_PUBLISH_LOG_EVERY", 100))

# ============================================================================
# Command Vocabulary
# ============================================================================
ACTION_OPEN = os.getenv("ACTION_OPEN", "buka")
ACTION_CLOSE = os.getenv("ACTION_CLOSE", "kunci")
ALLOWED_ACTIONS = frozenset({ACTION_OPEN, ACTION_CLOSE})

# ============================================================================
# Scheduler Configuration
# ============================================================================
SCHEDULER_MIN_TICK_SECONDS = 5
SCHEDULER_TICK_SECONDS = max(
    SCHEDULER_MIN_TICK_SECONDS, _get_int_env("SCHEDULER_TICK_SECONDS", 30)
)

# ============================================================================
# Heartbeat / Health Configuration
# ============================================================================
# Devices PING every 12 hours; a few minutes of grace before they count as down.
HEARTBEAT_INTERVAL_MIN = _get_float_env("HEARTBEAT_INTERVAL_MIN", 720.0)
HEARTBEAT_TOLERANCE_MIN = _get_float_env("HEARTBEAT_TOLERANCE_MIN", 4.0)
PING_COUNT_WINDOWS = {"ping_count_1d": 1, "ping_count_7d": 7}  # days

# ============================================================================
# HTTP / Live Events Configuration
# ============================================================================
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = _get_int_env("HTTP_PORT", 3000)
SSE_RETRY_MS = _get_int_env("SSE_RETRY_MS", 3000)
SSE_KEEPALIVE_S = _get_float_env("SSE_KEEPALIVE_S", 25.0)
SSE_SINK_BUFFER = _get_int_env("SSE_SINK_BUFFER", 32)

# ============================================================================
# Persistence Paths
# ============================================================================
DATA_DIR = os.getenv("DATA_DIR", "/data")
DB_PATH = os.getenv("DB_PATH", os.path.join(DATA_DIR, "doorlock.db"))
