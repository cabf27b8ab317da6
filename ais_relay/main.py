"""Command line entry point.

Loads settings, configures logging and runs the relay until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from pydantic import ValidationError

from ais_relay.config import ConfigError, Settings, get_settings, load_settings
from ais_relay.service import RelayService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ais-relay",
        description="Relay vessel data as AIS NMEA 0183 sentences over TCP, WebSocket and UDP.",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--log-level", help="Override the configured log level")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run(settings: Settings) -> None:
    """Run the relay until a termination signal arrives."""
    service = RelayService(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info("=" * 60)

    await service.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        await service.stop()


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config) if args.config else get_settings()
    except (ConfigError, ValidationError) as e:
        configure_logging("INFO")
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    configure_logging(args.log_level or settings.log_level)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
