"""InboundHandler – turns status/health channel traffic into records and events."""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from door_frame import decode_inbound
from models import AckFrame, DomainEvent, EventType, HeartbeatFrame, RawStatusFrame

if TYPE_CHECKING:
    from command_pipeline import CommandPipeline
    from event_broadcaster import EventBroadcaster
    from store import DoorlockStore

logger = logging.getLogger(__name__)


class InboundHandler:
    """Never raises: bad frames and storage errors end up in the log."""

    def __init__(
        self,
        store: DoorlockStore,
        pipeline: CommandPipeline,
        broadcaster: EventBroadcaster,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.broadcaster = broadcaster
        self._clock = clock

    async def handle(self, topic: str, payload: bytes | str) -> None:
        try:
            frame = decode_inbound(topic, payload)
        except Exception as e:
            logger.error("MQTT handler: decode failed on %s: %s", topic, e)
            return
        if frame is None:
            return
        try:
            if isinstance(frame, HeartbeatFrame):
                await self.on_heartbeat(frame)
            elif isinstance(frame, AckFrame):
                await self.on_ack(frame)
            elif isinstance(frame, RawStatusFrame):
                self.broadcaster.broadcast(
                    DomainEvent(EventType.STATUS_RAW, floor=frame.floor, raw=frame.raw)
                )
        except Exception as e:
            logger.error("MQTT handler error on %s: %s", topic, e, exc_info=True)

    async def on_heartbeat(self, frame: HeartbeatFrame) -> None:
        try:
            door = await self.store.door_for_device(frame.device_id)
        except Exception as e:
            logger.error("PING: door lookup for %s failed: %s", frame.device_id, e)
            self.broadcaster.broadcast(DomainEvent(
                EventType.PING,
                floor=frame.floor,
                device_id=frame.device_id,
                raw=frame.raw,
            ))
            return
        if door is None:
            self.broadcaster.broadcast(DomainEvent(
                EventType.PING_UNKNOWN,
                floor=frame.floor,
                device_id=frame.device_id,
                raw=frame.raw,
            ))
            return
        try:
            await self.store.record_heartbeat(door.id, self._clock())
        except Exception as e:
            logger.error("PING: storing heartbeat for door %s failed: %s", door.id, e)
        self.broadcaster.broadcast(DomainEvent(
            EventType.PING,
            floor=frame.floor,
            door_id=door.id,
            device_id=frame.device_id,
        ))

    async def on_ack(self, frame: AckFrame) -> None:
        outcome = await self.pipeline.on_ack(frame)
        self.broadcaster.broadcast(DomainEvent(
            EventType.ACK,
            floor=frame.floor,
            door_id=outcome.door.id if outcome.door else None,
            device_id=frame.device_id,
            action=frame.action,
            raw=frame.raw,
            cmd_log_id=outcome.entry.id if outcome.entry else None,
            matched=outcome.matched,
        ))
