"""Door liveness and downtime estimates derived from heartbeat history."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Iterable
from zoneinfo import ZoneInfo

from config import HEARTBEAT_INTERVAL_MIN, HEARTBEAT_TOLERANCE_MIN
from utils import iso_from_epoch, site_midnight_epoch, site_zone

if TYPE_CHECKING:
    from store import DoorlockStore

logger = logging.getLogger(__name__)


def ping_age_minutes(last_ping_at: float | None, now: float) -> float | None:
    if last_ping_at is None:
        return None
    return (now - last_ping_at) / 60.0


def is_healthy(
    last_ping_at: float | None,
    now: float,
    *,
    interval_min: float = HEARTBEAT_INTERVAL_MIN,
    tolerance_min: float = HEARTBEAT_TOLERANCE_MIN,
) -> bool:
    """Healthy iff the newest ping is at most interval + tolerance old."""
    age = ping_age_minutes(last_ping_at, now)
    if age is None:
        return False
    return age <= interval_min + tolerance_min


def downtime_minutes(
    ping_times: Iterable[float],
    *,
    interval_min: float = HEARTBEAT_INTERVAL_MIN,
    tolerance_min: float = HEARTBEAT_TOLERANCE_MIN,
) -> float:
    """Sum of (gap - interval) over consecutive pings whose gap is too long.

    Only the excess beyond the expected spacing counts as outage.
    """
    times = sorted(ping_times)
    total = 0.0
    for prev, cur in zip(times, times[1:]):
        gap_min = (cur - prev) / 60.0
        if gap_min > interval_min + tolerance_min:
            total += max(0.0, gap_min - interval_min)
    return total


class HealthEstimator:
    """Read-only reports over ping_logs."""

    def __init__(
        self,
        store: DoorlockStore,
        *,
        tz: ZoneInfo | None = None,
        interval_min: float = HEARTBEAT_INTERVAL_MIN,
        tolerance_min: float = HEARTBEAT_TOLERANCE_MIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.tz = tz or site_zone()
        self.interval_min = interval_min
        self.tolerance_min = tolerance_min
        self._clock = clock

    async def liveness(self, now: float | None = None) -> list[dict[str, Any]]:
        ts = self._clock() if now is None else now
        rows = await self.store.last_heartbeats()
        out = []
        for row in rows:
            last = row["last_ping_at"]
            out.append({
                "door_id": row["door_id"],
                "floor": row["floor"],
                "room_no": row["room_no"],
                "mac": row["mac"],
                "last_ping_at": iso_from_epoch(last),
                "ping_age_min": ping_age_minutes(last, ts),
                "healthy": is_healthy(
                    last, ts,
                    interval_min=self.interval_min,
                    tolerance_min=self.tolerance_min,
                ),
            })
        return out

    async def downtime_today(self, now: float | None = None) -> list[dict[str, Any]]:
        ts = self._clock() if now is None else now
        since = site_midnight_epoch(self.tz, ts)
        rows = await self.store.heartbeats_since(since)

        by_door: dict[int, dict[str, Any]] = {}
        for row in rows:
            entry = by_door.setdefault(row["door_id"], {"door": row, "times": []})
            if row["ping_at"] is not None:
                entry["times"].append(row["ping_at"])

        out = []
        for door_id, entry in by_door.items():
            door = entry["door"]
            minutes = downtime_minutes(
                entry["times"],
                interval_min=self.interval_min,
                tolerance_min=self.tolerance_min,
            )
            out.append({
                "door_id": door_id,
                "floor": door["floor"],
                "room_no": door["room_no"],
                "mac": door["mac"],
                "downtime_min_today": round(minutes),
            })
        out.sort(key=lambda r: (r["floor"], r["room_no"]))
        return out

    async def ping_counts(self, now: float | None = None) -> list[dict[str, Any]]:
        ts = self._clock() if now is None else now
        return await self.store.heartbeat_counts(ts)
