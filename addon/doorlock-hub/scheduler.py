"""DoorScheduler – fires per-door open/close windows once per day.

"Today" and "now" always come from the configured site zone, never the
server's local zone. Each window boundary is claimed through its *_sent_at
marker before its command is dispatched, so repeated or irregular ticks
cannot fire it twice and a failure after the claim is never re-sent; only an
upsert of the window (which clears the markers) re-arms it. A failure to
claim leaves the window armed for the next tick.

A window whose close time is not after its open time never fires its open
boundary (no minute satisfies open <= now < close) and fires close as soon as
now reaches close time.
"""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from typing import TYPE_CHECKING, Any, Callable
from zoneinfo import ZoneInfo

from command_pipeline import DoorUnboundError, PublishError
from config import ACTION_CLOSE, ACTION_OPEN, SCHEDULER_MIN_TICK_SECONDS, SCHEDULER_TICK_SECONDS
from models import DomainEvent, EventType, ScheduleWindow
from utils import site_now, site_zone

if TYPE_CHECKING:
    from command_pipeline import CommandPipeline
    from event_broadcaster import EventBroadcaster
    from store import DoorlockStore

logger = logging.getLogger(__name__)

OPEN = "open"
CLOSE = "close"


def hhmm(value: str | None) -> str:
    """Normalise a stored time-of-day ('08:00' or '08:00:00') to HH:MM."""
    return (value or "")[:5]


def open_due(window: ScheduleWindow, now_hm: str) -> bool:
    return (
        window.open_sent_at is None
        and hhmm(window.open_time) <= now_hm < hhmm(window.close_time)
    )


def close_due(window: ScheduleWindow, now_hm: str) -> bool:
    return window.close_sent_at is None and now_hm >= hhmm(window.close_time)


class DoorScheduler:
    """Periodic tick over today's enabled windows."""

    def __init__(
        self,
        store: DoorlockStore,
        pipeline: CommandPipeline,
        broadcaster: EventBroadcaster,
        *,
        tz: ZoneInfo | None = None,
        tick_seconds: float = SCHEDULER_TICK_SECONDS,
        open_action: str = ACTION_OPEN,
        close_action: str = ACTION_CLOSE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.broadcaster = broadcaster
        self.tz = tz or site_zone()
        self.tick_seconds = max(float(SCHEDULER_MIN_TICK_SECONDS), float(tick_seconds))
        self.actions = {OPEN: open_action, CLOSE: close_action}
        self._clock = clock

        self._tick_lock = asyncio.Lock()
        self._loop_task: asyncio.Task[Any] | None = None
        self._tick_tasks: set[asyncio.Task[Any]] = set()

        self.ticks_run = 0
        self.ticks_skipped = 0
        self.fired = 0

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: float | None = None) -> list[tuple[int, str]] | None:
        """Evaluate today's windows once.

        Returns the (schedule_id, boundary) pairs fired, or None when the
        tick was skipped because the previous one is still running.
        """
        if self._tick_lock.locked():
            self.ticks_skipped += 1
            logger.warning("Scheduler: previous tick still running, skipping")
            return None

        async with self._tick_lock:
            ts = self._clock() if now is None else now
            local = site_now(self.tz, ts)
            today = local.date().isoformat()
            now_hm = local.strftime("%H:%M")
            self.ticks_run += 1

            try:
                windows = await self.store.enabled_schedules_for(today)
            except Exception as e:
                logger.error("Scheduler: loading schedules for %s failed: %s", today, e)
                return []

            fired: list[tuple[int, str]] = []
            for window in windows:
                for boundary, due in ((OPEN, open_due), (CLOSE, close_due)):
                    if not due(window, now_hm):
                        continue
                    try:
                        if await self._fire(window, boundary, ts, local):
                            fired.append((window.id, boundary))
                    except Exception as e:
                        logger.error(
                            "Scheduler: window #%s %s failed: %s",
                            window.id, boundary, e, exc_info=True,
                        )
            return fired

    async def _fire(
        self,
        window: ScheduleWindow,
        boundary: str,
        ts: float,
        local: datetime.datetime,
    ) -> bool:
        action = self.actions[boundary]
        # the boundary is consumed before anything goes on the wire
        if not await self.store.mark_schedule_sent(window.id, boundary, ts):
            logger.warning("Scheduler: window #%s %s was already marked", window.id, boundary)
            return False

        cmd_log_id: int | None = None
        try:
            result = await self.pipeline.dispatch(window.door_id, action)
            cmd_log_id = result.cmd_log_id
        except DoorUnboundError:
            logger.warning(
                "Scheduler: door %s has no device, %s of window #%s not sent",
                window.door_id, action, window.id,
            )
            self.broadcaster.broadcast(DomainEvent(
                EventType.COMMAND_UNMATCHABLE,
                floor=window.floor,
                door_id=window.door_id,
                action=action,
                schedule_id=window.id,
                timestamp=local.isoformat(),
            ))
            return False
        except PublishError as e:
            # at-most-once: the publish may or may not have reached the broker
            cmd_log_id = e.cmd_log_id
            logger.error(
                "Scheduler: publish of %s for window #%s failed, not retrying",
                action, window.id,
            )

        self.fired += 1
        logger.info(
            "Scheduler: ⏰ window #%s door %s %s fired (log #%s)",
            window.id, window.door_id, action, cmd_log_id,
        )
        self.broadcaster.broadcast(DomainEvent(
            EventType.SCHEDULE_FIRED,
            floor=window.floor,
            door_id=window.door_id,
            action=action,
            schedule_id=window.id,
            cmd_log_id=cmd_log_id,
            timestamp=local.isoformat(),
        ))
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        logger.info(
            "Scheduler: started (tick %ss, zone %s)", self.tick_seconds, self.tz.key
        )
        while True:
            await asyncio.sleep(self.tick_seconds)
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        tasks = [t for t in (self._loop_task, *self._tick_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "scheduler_ticks": self.ticks_run,
            "scheduler_ticks_skipped": self.ticks_skipped,
            "scheduler_fired": self.fired,
        }
