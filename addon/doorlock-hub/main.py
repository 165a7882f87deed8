#!/usr/bin/env python3
"""
Doorlock Hub - application entry point.
"""

import asyncio
import logging
import sys

from config import (
    DB_PATH,
    FLOORS,
    HEARTBEAT_INTERVAL_MIN,
    HEARTBEAT_TOLERANCE_MIN,
    HTTP_HOST,
    HTTP_PORT,
    LOG_LEVEL,
    MQTT_HOST,
    MQTT_PORT,
    MQTT_TOPIC_PREFIX,
    SCHEDULER_TICK_SECONDS,
    SITE_TZ,
)
from hub import DoorlockHub

# Logging setup
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


def log_configuration() -> None:
    logger.info("📋 Configuration:")
    logger.info(f"   Time zone: {SITE_TZ}")
    logger.info(f"   Floors: {','.join(str(f) for f in FLOORS)}")
    logger.info(f"   MQTT: {MQTT_HOST}:{MQTT_PORT} (prefix {MQTT_TOPIC_PREFIX})")
    logger.info(f"   HTTP: {HTTP_HOST}:{HTTP_PORT}")
    logger.info(f"   Database: {DB_PATH}")
    logger.info(f"   Scheduler tick: {SCHEDULER_TICK_SECONDS}s")
    logger.info(
        f"   Heartbeat: every {HEARTBEAT_INTERVAL_MIN:g} min "
        f"(+{HEARTBEAT_TOLERANCE_MIN:g} min tolerance)"
    )


async def main():
    """Main function."""
    logger.info("=" * 60)
    logger.info("Doorlock Hub - MQTT door command & schedule engine")
    logger.info("=" * 60)

    log_configuration()

    try:
        hub = DoorlockHub()
        await hub.start()
    except KeyboardInterrupt:
        logger.info("👋 Shutting down...")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
