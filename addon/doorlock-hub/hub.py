"""DoorlockHub – wires store, MQTT, command pipeline, scheduler and HTTP API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import uvicorn

from api import create_app
from command_pipeline import CommandPipeline
from config import DB_PATH, FLOORS, HTTP_HOST, HTTP_PORT, LOG_LEVEL, MQTT_CONNECT_TIMEOUT
from door_frame import build_topic
from event_broadcaster import EventBroadcaster
from health import HealthEstimator
from ingest import InboundHandler
from models import ChannelLeaf
from mqtt_client import MQTTClient
from scheduler import DoorScheduler
from store import DoorlockStore

logger = logging.getLogger(__name__)


class DoorlockHub:
    """Owns every long-lived component of the service."""

    def __init__(
        self,
        *,
        db_path: str = DB_PATH,
        floors: list[int] | None = None,
        store: DoorlockStore | None = None,
        mqtt: MQTTClient | None = None,
    ) -> None:
        self.floors = list(FLOORS if floors is None else floors)
        self.store = store or DoorlockStore(db_path)
        self.mqtt = mqtt or MQTTClient()
        self.broadcaster = EventBroadcaster()
        self.pipeline = CommandPipeline(self.store, self.mqtt)
        self.inbound = InboundHandler(self.store, self.pipeline, self.broadcaster)
        self.scheduler = DoorScheduler(self.store, self.pipeline, self.broadcaster)
        self.health = HealthEstimator(self.store)
        self.app = create_app(self)
        self._loop: asyncio.AbstractEventLoop | None = None

    def setup_mqtt(self) -> None:
        """Route every floor's status/health channel into the event loop."""
        if self._loop is None:
            return

        def _handler(topic: str, payload: bytes, _qos: int, _retain: bool) -> None:
            if self._loop is None:
                return
            asyncio.run_coroutine_threadsafe(
                self.inbound.handle(topic, payload), self._loop
            )

        for floor in self.floors:
            for leaf in (ChannelLeaf.STATUS, ChannelLeaf.HEALTH):
                self.mqtt.add_message_handler(
                    topic=build_topic(floor, leaf), handler=_handler, qos=0
                )
        logger.info("MQTT: listening on floors %s", ",".join(str(f) for f in self.floors))

    async def start(self) -> None:
        """Start everything and serve HTTP until cancelled."""
        self._loop = asyncio.get_running_loop()
        self.setup_mqtt()

        if not await asyncio.to_thread(self.mqtt.connect, MQTT_CONNECT_TIMEOUT):
            logger.warning("MQTT: Initial connect failed, health check will retry")
        await self.mqtt.start_health_check()

        self.scheduler.start()

        server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=HTTP_HOST,
            port=HTTP_PORT,
            log_level=LOG_LEVEL.lower(),
        ))
        logger.info(f"🚀 Doorlock Hub listening on http://{HTTP_HOST}:{HTTP_PORT}")
        try:
            await server.serve()
        finally:
            await self.stop()

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.mqtt.disconnect()
        self.store.close()
        self._loop = None

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.pipeline.get_stats(),
            **self.mqtt.get_stats(),
            **self.scheduler.get_stats(),
            "subscribers": self.broadcaster.subscriber_count,
            "events_broadcast": self.broadcaster.events_broadcast,
        }
