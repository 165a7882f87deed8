#!/usr/bin/env python3
"""
Frame utilities for the doorlock text protocol.

Channels:  <prefix>/<segment><floor>/control|status|health
Inbound:   PING,<mac>            on .../health
           ACK,<mac>,<action...> on .../status (action may contain commas)
Outbound:  <action>,<mac>        on .../control
"""

from __future__ import annotations

import logging
import re

from config import MQTT_FLOOR_SEGMENT, MQTT_TOPIC_PREFIX
from models import AckFrame, ChannelLeaf, HeartbeatFrame, InboundFrame, RawStatusFrame

logger = logging.getLogger(__name__)

PING_MARKER = "PING"
ACK_MARKER = "ACK"


def build_topic(
    floor: int,
    leaf: ChannelLeaf,
    *,
    prefix: str = MQTT_TOPIC_PREFIX,
    segment: str = MQTT_FLOOR_SEGMENT,
) -> str:
    """Channel name for a floor; used for publishing and subscribing alike."""
    return f"{prefix}/{segment}{int(floor)}/{leaf.value}"


def _topic_re(prefix: str, segment: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(prefix)}/{re.escape(segment)}(-?\d+)/(status|health)$"
    )


def parse_topic(
    topic: str,
    *,
    prefix: str = MQTT_TOPIC_PREFIX,
    segment: str = MQTT_FLOOR_SEGMENT,
) -> tuple[int, ChannelLeaf] | tuple[None, None]:
    """Return (floor, leaf) for inbound channels, (None, None) otherwise."""
    m = _topic_re(prefix, segment).match(topic)
    if not m:
        return None, None
    return int(m.group(1)), ChannelLeaf(m.group(2))


def _payload_text(payload: bytes | str) -> str:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return payload.strip()


def decode_heartbeat(floor: int, text: str) -> HeartbeatFrame | None:
    parts = text.split(",")
    if len(parts) != 2 or parts[0] != PING_MARKER:
        return None
    mac = parts[1].strip()
    if not mac:
        return None
    return HeartbeatFrame(floor=floor, device_id=mac, raw=text)


def decode_status(floor: int, text: str) -> AckFrame | RawStatusFrame:
    parts = text.split(",")
    if len(parts) >= 3 and parts[0] == ACK_MARKER:
        mac = parts[1].strip()
        action = ",".join(parts[2:]).strip()
        if mac and action:
            return AckFrame(floor=floor, device_id=mac, action=action, raw=text)
    return RawStatusFrame(floor=floor, raw=text)


def decode_inbound(
    topic: str,
    payload: bytes | str,
    *,
    prefix: str = MQTT_TOPIC_PREFIX,
    segment: str = MQTT_FLOOR_SEGMENT,
) -> InboundFrame | None:
    """Classify an inbound message.

    Returns None for foreign channels and malformed heartbeats; non-ACK
    status traffic comes back as RawStatusFrame.
    """
    floor, leaf = parse_topic(topic, prefix=prefix, segment=segment)
    if floor is None:
        return None
    text = _payload_text(payload)
    if leaf is ChannelLeaf.HEALTH:
        frame = decode_heartbeat(floor, text)
        if frame is None:
            logger.debug("Dropping malformed heartbeat on %s: %r", topic, text)
        return frame
    return decode_status(floor, text)


def encode_command(action: str, mac: str) -> str:
    """Outbound command frame. No escaping; action is validated upstream."""
    return f"{action},{mac}"
