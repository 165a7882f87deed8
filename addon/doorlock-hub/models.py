#!/usr/bin/env python3
"""
Data models for Doorlock Hub.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from utils import iso_from_epoch, iso_now


# ============================================================================
# Channel / Frame Models
# ============================================================================

class ChannelLeaf(Enum):
    """Last segment of a floor channel."""
    CONTROL = "control"    # outbound commands
    STATUS = "status"      # inbound ACK frames
    HEALTH = "health"      # inbound PING frames


@dataclass(frozen=True)
class HeartbeatFrame:
    """PING,<device> received on a health channel."""
    floor: int
    device_id: str
    raw: str


@dataclass(frozen=True)
class AckFrame:
    """ACK,<device>,<action...> received on a status channel."""
    floor: int
    device_id: str
    action: str
    raw: str


@dataclass(frozen=True)
class RawStatusFrame:
    """Anything else received on a status channel."""
    floor: int
    raw: str


InboundFrame = HeartbeatFrame | AckFrame | RawStatusFrame


# ============================================================================
# Registry / Storage Rows
# ============================================================================

@dataclass
class DoorTarget:
    """Door resolved together with its (optional) bound device."""
    id: int
    floor: int
    room_no: str
    mac: str | None = None
    device_no: str | None = None


@dataclass
class CommandLogEntry:
    """One row of the command ledger."""
    id: int
    door_id: int
    action: str
    requested_at: float
    ack_at: float | None = None
    latency_ms: int | None = None

    @property
    def acknowledged(self) -> bool:
        return self.ack_at is not None


@dataclass
class ScheduleWindow:
    """Open/close window for one door on one calendar date."""
    id: int
    door_id: int
    schedule_date: str          # YYYY-MM-DD
    open_time: str              # HH:MM
    close_time: str             # HH:MM
    enabled: bool = True
    open_sent_at: float | None = None
    close_sent_at: float | None = None
    floor: int | None = None
    room_no: str | None = None
    mac: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "door_id": self.door_id,
            "schedule_date": self.schedule_date,
            "open_time": self.open_time,
            "close_time": self.close_time,
            "enabled": self.enabled,
            "open_sent_at": iso_from_epoch(self.open_sent_at),
            "close_sent_at": iso_from_epoch(self.close_sent_at),
            "floor": self.floor,
            "room_no": self.room_no,
            "mac": self.mac,
        }


@dataclass
class DispatchResult:
    """Outcome of a successfully published command."""
    topic: str
    message: str
    cmd_log_id: int


# ============================================================================
# Domain Events (never persisted)
# ============================================================================

class EventType(Enum):
    """Event kinds pushed to live subscribers."""
    PING = "ping"
    PING_UNKNOWN = "ping_unknown"
    ACK = "ack"
    STATUS_RAW = "status_raw"
    COMMAND_UNMATCHABLE = "command_unmatchable"
    SCHEDULE_FIRED = "schedule_fired"


@dataclass
class DomainEvent:
    """Transient event; None-valued fields are left out of the payload."""
    type: EventType
    floor: int | None = None
    door_id: int | None = None
    device_id: str | None = None
    action: str | None = None
    raw: str | None = None
    schedule_id: int | None = None
    cmd_log_id: int | None = None
    matched: bool | None = None
    timestamp: str = field(default_factory=iso_now)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value}
        for key in (
            "floor", "door_id", "device_id", "action", "raw",
            "schedule_id", "cmd_log_id", "matched",
        ):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        # ack for an unbound device still reports door_id explicitly
        if self.type is EventType.ACK:
            payload["door_id"] = self.door_id
        payload["timestamp"] = self.timestamp
        return payload
