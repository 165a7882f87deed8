#!/usr/bin/env python3
"""
MQTT client for Doorlock Hub.

Commands go out QoS 0 and are never queued or replayed: if the broker is not
reachable the publish fails and the caller is told so.
"""

import asyncio
import logging
import time
from typing import Any, Callable

import paho.mqtt.client as mqtt

from config import (
    MQTT_CLIENT_ID,
    MQTT_CONNECT_TIMEOUT,
    MQTT_HEALTH_CHECK_INTERVAL,
    MQTT_HOST,
    MQTT_PASSWORD,
    MQTT_PORT,
    MQTT_PUBLISH_LOG_EVERY,
    MQTT_USERNAME,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes, int, bool], None]


class MQTTClient:
    """paho-mqtt wrapper: connect/reconnect, topic handlers, raw publish."""

    # MQTT return codes
    RC_CODES = {
        0: "Connection successful",
        1: "Incorrect protocol version",
        2: "Invalid client identifier",
        3: "Server unavailable",
        4: "Bad username or password",
        5: "Not authorized",
    }

    def __init__(
        self,
        *,
        host: str = MQTT_HOST,
        port: int = MQTT_PORT,
        client_id: str = MQTT_CLIENT_ID,
    ):
        self.host = host
        self.port = port
        self.client_id = client_id
        self.client: mqtt.Client | None = None
        self.connected = False

        self._message_handlers: dict[str, tuple[int, MessageHandler]] = {}
        self._wildcard_handlers: list[tuple[str, int, MessageHandler]] = []

        # Stats
        self.publish_count = 0
        self.publish_failed = 0
        self.messages_received = 0
        self.last_publish_time: float = 0
        self.last_error_time: float = 0
        self.last_error_msg: str = ""
        self.reconnect_attempts = 0

        self._health_check_task: asyncio.Task[Any] | None = None

    def connect(self, timeout: float | None = None) -> bool:
        """Connect to the broker, waiting up to `timeout` for CONNACK."""
        timeout = timeout or MQTT_CONNECT_TIMEOUT
        if self.client is not None:
            self._cleanup_client()
        try:
            self.client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION1,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            if MQTT_USERNAME:
                self.client.username_pw_set(MQTT_USERNAME, MQTT_PASSWORD)

            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.on_message = self._on_message

            logger.info(f"MQTT: Connecting to {self.host}:{self.port} (timeout {timeout}s)")
            self.client.connect(self.host, self.port, 60)
            self.client.loop_start()

            start = time.time()
            while not self.connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self.connected:
                logger.info(f"MQTT: ✅ Connected to {self.host}:{self.port}")
                self.reconnect_attempts = 0
                return True
            logger.error(f"MQTT: ❌ Connect timed out after {timeout}s")
            self._cleanup_client()
            return False

        except Exception as e:
            logger.error(f"MQTT: ❌ Connect failed: {e}")
            self._cleanup_client()
            return False

    def _cleanup_client(self) -> None:
        if self.client:
            try:
                self.client.loop_stop()
                self.client.disconnect()
            except Exception as e:  # noqa: BLE001
                logger.debug(f"MQTT: cleanup error ignored: {e}")
            self.client = None
        self.connected = False

    def disconnect(self) -> None:
        if self._health_check_task and not self._health_check_task.done():
            self._health_check_task.cancel()
        self._cleanup_client()

    def _on_connect(self, client: Any, userdata: Any, flags: Any, rc: int) -> None:
        rc_msg = self.RC_CODES.get(rc, f"Unknown error ({rc})")
        if rc == 0:
            logger.info(f"MQTT: Connected (flags={flags})")
            self.connected = True
            self.reconnect_attempts = 0
            self._resubscribe(client)
        else:
            logger.error(f"MQTT: ❌ Connection refused: {rc_msg}")
            self.connected = False
            self.last_error_time = time.time()
            self.last_error_msg = rc_msg

    def _on_disconnect(self, client: Any, userdata: Any, rc: int) -> None:
        self.connected = False
        if rc == 0:
            logger.info("MQTT: Disconnected (clean)")
        else:
            logger.warning(f"MQTT: ⚠️ Unexpected disconnect (rc={rc})")
            self.last_error_time = time.time()
            self.last_error_msg = f"Unexpected disconnect (rc={rc})"

    def _resubscribe(self, client: Any) -> None:
        topics = [(t, qos) for t, (qos, _h) in self._message_handlers.items()]
        topics += [(t, qos) for t, qos, _h in self._wildcard_handlers]
        for topic, qos in topics:
            try:
                client.subscribe(topic, qos=qos)
                logger.info(f"MQTT: Subscribed {topic}")
            except Exception as e:
                logger.error(f"MQTT: Subscribe {topic} failed: {e}")

    def add_message_handler(self, *, topic: str, handler: MessageHandler, qos: int = 0) -> None:
        """Route messages for `topic` (wildcards allowed) to `handler`.

        The handler runs in paho's network thread.
        """
        if "+" in topic or "#" in topic:
            self._wildcard_handlers.append((topic, qos, handler))
        else:
            self._message_handlers[topic] = (qos, handler)
        if self.client is not None and self.connected:
            try:
                self.client.subscribe(topic, qos=qos)
                logger.info(f"MQTT: Subscribed {topic}")
            except Exception as e:
                logger.error(f"MQTT: Subscribe {topic} failed: {e}")

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        self.messages_received += 1
        topic = str(msg.topic)
        handlers: list[MessageHandler] = []
        exact = self._message_handlers.get(topic)
        if exact:
            handlers.append(exact[1])
        for pattern, _qos, handler in self._wildcard_handlers:
            if mqtt.topic_matches_sub(pattern, topic):
                handlers.append(handler)
        for handler in handlers:
            try:
                handler(topic, msg.payload, msg.qos, bool(msg.retain))
            except Exception as e:
                logger.error(f"MQTT: Handler for {topic} failed: {e}", exc_info=True)

    def is_ready(self) -> bool:
        return self.client is not None and self.connected

    async def publish_raw(self, *, topic: str, payload: str, qos: int = 0, retain: bool = False) -> bool:
        """Single publish attempt. True only if paho accepted the message."""
        self.publish_count += 1
        if not self.is_ready():
            self.publish_failed += 1
            logger.warning(f"MQTT: Offline, cannot publish to {topic}")
            return False
        try:
            result = self.client.publish(topic, payload, qos=qos, retain=retain)
        except Exception as e:
            self.publish_failed += 1
            self.last_error_time = time.time()
            self.last_error_msg = str(e)
            logger.error(f"MQTT: Publish exception: {e}")
            return False
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.publish_failed += 1
            logger.error(f"MQTT: Publish failed rc={result.rc}")
            return False
        self.last_publish_time = time.time()
        ok = self.publish_count - self.publish_failed
        if ok % MQTT_PUBLISH_LOG_EVERY == 0:
            logger.info(
                f"MQTT: 📊 Stats: {ok} OK, {self.publish_failed} FAIL "
                f"of {self.publish_count} total"
            )
        return True

    async def health_check_loop(self) -> None:
        """Periodically reconnect while the broker is unreachable."""
        logger.info(f"MQTT: Health check started (interval {MQTT_HEALTH_CHECK_INTERVAL}s)")
        while True:
            await asyncio.sleep(MQTT_HEALTH_CHECK_INTERVAL)
            if self.connected:
                continue
            self.reconnect_attempts += 1
            logger.warning(f"MQTT: 🔄 Reconnect attempt #{self.reconnect_attempts}")
            ok = await asyncio.to_thread(self.connect, MQTT_CONNECT_TIMEOUT)
            if ok:
                logger.info("MQTT: ✅ Reconnected")
            else:
                logger.warning(
                    f"MQTT: ❌ Reconnect failed, next attempt in {MQTT_HEALTH_CHECK_INTERVAL}s"
                )

    async def start_health_check(self) -> None:
        if self._health_check_task is None or self._health_check_task.done():
            self._health_check_task = asyncio.create_task(self.health_check_loop())

    def get_stats(self) -> dict[str, Any]:
        return {
            "mqtt_connected": self.connected,
            "mqtt_publish_count": self.publish_count,
            "mqtt_publish_failed": self.publish_failed,
            "mqtt_messages_received": self.messages_received,
            "mqtt_last_error": self.last_error_msg or None,
        }
