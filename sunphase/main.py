#!/usr/bin/env python3
"""Entry point - run sun phase monitors for every configured location."""

import asyncio
import logging
import os
import sys

from sunphase.config import get_data_directory, load_config_from_files
from sunphase.exceptions import ConfigError
from sunphase.locations import SunPhasePlatform
from sunphase.publisher import HomeAssistantPublisher, SensorRegistry
from sunphase.webserver import StatusServer

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def home_assistant_target():
    """Return (base_url, token) for Home Assistant, or (None, None).

    Inside a Supervisor add-on the SUPERVISOR_TOKEN proxy is used; otherwise
    HA_TOKEN plus either HA_URL or HA_HOST / HA_PORT / HA_USE_SSL describe
    the instance.
    """
    token = os.getenv("HA_TOKEN")
    if token:
        url_from_env = os.getenv("HA_URL")
        if url_from_env:
            return url_from_env.rstrip("/"), token
        host = os.getenv("HA_HOST", "localhost")
        port = int(os.getenv("HA_PORT", "8123"))
        scheme = "https" if os.getenv("HA_USE_SSL", "false").lower() == "true" else "http"
        return f"{scheme}://{host}:{port}", token

    supervisor_token = os.getenv("SUPERVISOR_TOKEN")
    if supervisor_token:
        return "http://supervisor/core", supervisor_token

    return None, None


async def run() -> int:
    """Run until cancelled. Returns a process exit code."""
    data_dir = get_data_directory()
    raw_config = load_config_from_files(data_dir)

    base_url, token = home_assistant_target()
    if base_url:
        publisher = HomeAssistantPublisher(base_url, token)
        await publisher.start()
    else:
        logger.info("No Home Assistant token configured; sensors are kept in memory only")
        publisher = SensorRegistry()

    platform = SunPhasePlatform(publisher)
    server = StatusServer(platform, port=int(os.getenv("STATUS_PORT", "8099")))

    try:
        try:
            configs = platform.load(raw_config)
        except ConfigError as e:
            logger.error(f"Invalid configuration: {e}")
            return 1

        if not configs:
            logger.warning(f"No valid locations configured in {data_dir}")

        await server.start()
        await asyncio.Event().wait()
    finally:
        platform.shutdown()
        await server.stop()
        if isinstance(publisher, HomeAssistantPublisher):
            await publisher.stop()
    return 0


def main():
    """Main entry point."""
    configure_logging()
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
