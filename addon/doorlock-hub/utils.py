#!/usr/bin/env python3
"""
Helper functions for Doorlock Hub.
"""

import datetime
import time
from zoneinfo import ZoneInfo

from config import SITE_TZ


def iso_now() -> str:
    """Return the current UTC time in ISO format."""
    return datetime.datetime.now(datetime.UTC).isoformat()


def iso_from_epoch(ts: float | None) -> str | None:
    """Render an epoch timestamp as ISO (UTC), keeping None as None."""
    if ts is None:
        return None
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).isoformat()


def site_zone(name: str | None = None) -> ZoneInfo:
    """Return the fixed zone used for schedules and daily reports."""
    return ZoneInfo(name or SITE_TZ)


def site_now(tz: ZoneInfo | None = None, now: float | None = None) -> datetime.datetime:
    """Wall clock in the site zone, independent of the server's local zone."""
    ts = time.time() if now is None else now
    return datetime.datetime.fromtimestamp(ts, tz or site_zone())


def site_midnight_epoch(tz: ZoneInfo | None = None, now: float | None = None) -> float:
    """Epoch of today's local midnight in the site zone."""
    local = site_now(tz, now)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()
