"""CommandPipeline – door command dispatch and ACK correlation.

The pending-ACK table lives only here and only in memory. It maps
(mac, action) to the newest command_logs id for that pair: a newer dispatch
for the same pair replaces the older one, and a restart forgets all of them.
"""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from config import ALLOWED_ACTIONS, MQTT_COMMAND_QOS
from door_frame import build_topic, encode_command
from models import AckFrame, ChannelLeaf, CommandLogEntry, DispatchResult, DoorTarget

if TYPE_CHECKING:
    from mqtt_client import MQTTClient
    from store import DoorlockStore

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class DispatchError(Exception):
    """Command could not be dispatched; maps onto an HTTP status."""
    status_code = 400
    error = "dispatch_failed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidCommandError(DispatchError):
    error = "invalid_command"


class DoorNotFoundError(DispatchError):
    status_code = 404
    error = "door_not_found"


class DoorUnboundError(DispatchError):
    error = "door_unbound"


class PublishError(DispatchError):
    """Broker publish failed. The log row and pending entry are kept."""
    status_code = 500
    error = "publish_failed"

    def __init__(self, message: str, *, topic: str, payload: str, cmd_log_id: int) -> None:
        super().__init__(message)
        self.topic = topic
        self.payload = payload
        self.cmd_log_id = cmd_log_id


@dataclass
class AckOutcome:
    """What the correlator made of one ACK frame."""
    door: DoorTarget | None
    entry: CommandLogEntry | None

    @property
    def matched(self) -> bool:
        return self.entry is not None


# ============================================================================
# Pipeline
# ============================================================================

class CommandPipeline:
    """Builds/publishes commands and reconciles device ACKs against them."""

    def __init__(
        self,
        store: DoorlockStore,
        mqtt: MQTTClient,
        *,
        allowed_actions: frozenset[str] = ALLOWED_ACTIONS,
        qos: int = MQTT_COMMAND_QOS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.mqtt = mqtt
        self.allowed_actions = allowed_actions
        self.qos = qos
        self._clock = clock
        self._pending: dict[tuple[str, str], int] = {}

        self.dispatched = 0
        self.acks_matched = 0
        self.acks_unmatched = 0

    # ------------------------------------------------------------------
    # Pending table (no awaits in here)
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_for(self, mac: str, action: str) -> int | None:
        return self._pending.get((mac, action))

    def _register_pending(self, mac: str, action: str, log_id: int) -> int | None:
        key = (mac, action)
        superseded = self._pending.get(key)
        self._pending[key] = log_id
        return superseded

    def _consume_pending(self, mac: str, action: str) -> int | None:
        return self._pending.pop((mac, action), None)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def validate_action(self, action: Any) -> str:
        text = str(action or "").strip()
        if text not in self.allowed_actions:
            raise InvalidCommandError(
                f"unknown command {text!r}, expected one of {sorted(self.allowed_actions)}"
            )
        return text

    async def dispatch(self, door_id: Any, action: Any) -> DispatchResult:
        """Send `action` to the device bound to `door_id`.

        Validation and resolution failures raise before anything is written.
        A publish failure raises PublishError after the log row and pending
        entry exist; neither is rolled back.
        """
        action = self.validate_action(action)
        if isinstance(door_id, bool) or not isinstance(door_id, int) or door_id <= 0:
            raise InvalidCommandError("door_id must be a positive integer")

        door = await self.store.door_with_device(door_id)
        if door is None:
            raise DoorNotFoundError(f"door {door_id} not found")
        if not door.mac:
            raise DoorUnboundError(f"door {door_id} has no bound device")

        topic = build_topic(door.floor, ChannelLeaf.CONTROL)
        payload = encode_command(action, door.mac)

        log_id = await self.store.insert_command_log(door.id, action, self._clock())
        superseded = self._register_pending(door.mac, action, log_id)
        if superseded is not None:
            logger.info(
                "CMD: %s|%s pending #%s superseded by #%s",
                door.mac, action, superseded, log_id,
            )

        ok = await self.mqtt.publish_raw(topic=topic, payload=payload, qos=self.qos)
        if not ok:
            logger.error("CMD: ❌ publish failed %s -> %s (log #%s)", payload, topic, log_id)
            raise PublishError(
                "failed to publish to MQTT", topic=topic, payload=payload, cmd_log_id=log_id
            )

        self.dispatched += 1
        logger.info("CMD: → %s %s (door %s, log #%s)", topic, payload, door.id, log_id)
        return DispatchResult(topic=topic, message=payload, cmd_log_id=log_id)

    # ------------------------------------------------------------------
    # ACK correlation
    # ------------------------------------------------------------------

    async def on_ack(self, frame: AckFrame) -> AckOutcome:
        """Correlate an ACK. Storage errors are logged, never raised."""
        door: DoorTarget | None = None
        try:
            door = await self.store.door_for_device(frame.device_id)
        except Exception as e:
            logger.error("ACK: door lookup for %s failed: %s", frame.device_id, e)

        log_id = self._consume_pending(frame.device_id, frame.action)
        if log_id is None:
            self.acks_unmatched += 1
            logger.info("ACK: %s|%s has no pending command", frame.device_id, frame.action)
            return AckOutcome(door=door, entry=None)

        entry: CommandLogEntry | None = None
        try:
            entry = await self.store.acknowledge_command(log_id, self._clock())
        except Exception as e:
            logger.error("ACK: marking log #%s failed: %s", log_id, e)

        if entry is None:
            self.acks_unmatched += 1
            return AckOutcome(door=door, entry=None)

        self.acks_matched += 1
        logger.info(
            "ACK: ✅ %s|%s log #%s latency %sms",
            frame.device_id, frame.action, entry.id, entry.latency_ms,
        )
        return AckOutcome(door=door, entry=entry)

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending_acks": self.pending_count,
            "commands_dispatched": self.dispatched,
            "acks_matched": self.acks_matched,
            "acks_unmatched": self.acks_unmatched,
        }
