"""EventBroadcaster – best-effort fan-out of domain events to live subscribers.

Each subscriber gets a small bounded frame buffer standing in for a socket
send buffer. A subscriber whose buffer is full simply misses the event:
nothing is retried and nothing queues up behind it.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from config import SSE_KEEPALIVE_S, SSE_RETRY_MS, SSE_SINK_BUFFER
from models import DomainEvent

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"


def format_event(event: DomainEvent) -> str:
    """Serialise one event as a text/event-stream data frame."""
    return f"data: {json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


class Subscription:
    """One live sink."""

    def __init__(self, sub_id: int, buffer_size: int) -> None:
        self.id = sub_id
        self._frames: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, buffer_size))
        self.delivered = 0
        self.dropped = 0

    def offer(self, frame: str) -> bool:
        try:
            self._frames.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        self.delivered += 1
        return True

    async def next_frame(self, timeout: float | None = None) -> str | None:
        """Next frame, or None when `timeout` passes first."""
        try:
            return await asyncio.wait_for(self._frames.get(), timeout)
        except asyncio.TimeoutError:
            return None


class EventBroadcaster:
    """Owns the subscriber set. All mutation happens on the event loop."""

    def __init__(
        self,
        *,
        retry_ms: int = SSE_RETRY_MS,
        buffer_size: int = SSE_SINK_BUFFER,
        keepalive_s: float = SSE_KEEPALIVE_S,
    ) -> None:
        self.retry_ms = retry_ms
        self.buffer_size = buffer_size
        self.keepalive_s = keepalive_s
        self._subscribers: dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self.events_broadcast = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(next(self._ids), self.buffer_size)
        sub.offer(f"retry: {self.retry_ms}\n\n")
        self._subscribers[sub.id] = sub
        logger.debug("SSE: subscriber %s connected (%d total)", sub.id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if self._subscribers.pop(sub.id, None) is not None:
            logger.debug(
                "SSE: subscriber %s gone (%d total, %d dropped)",
                sub.id, len(self._subscribers), sub.dropped,
            )

    @asynccontextmanager
    async def subscription(self) -> AsyncIterator[Subscription]:
        sub = self.subscribe()
        try:
            yield sub
        finally:
            self.unsubscribe(sub)

    def broadcast(self, event: DomainEvent) -> int:
        """Offer the event to every current subscriber; returns how many took it."""
        frame = format_event(event)
        self.events_broadcast += 1
        accepted = 0
        for sub in list(self._subscribers.values()):
            if sub.offer(frame):
                accepted += 1
        return accepted

    async def stream(self) -> AsyncIterator[str]:
        """Frames for one subscriber, with keep-alive comments while idle.

        The subscription is released however the consumer stops iterating.
        """
        async with self.subscription() as sub:
            while True:
                frame = await sub.next_frame(self.keepalive_s)
                yield frame if frame is not None else KEEPALIVE_FRAME
