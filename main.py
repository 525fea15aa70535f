"""Main entry point for the schedule manager."""

import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from src.config import Config, ConfigError
from src.scheduler.schedule_manager import ScheduleManager
from version import __version__


# Global flag for graceful shutdown
shutdown_event = asyncio.Event()


def setup_logging(config: Config):
    """Set up console and rotating file logging."""
    log_config = config.logging_config
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper())

    log_dir = Path('logs')
    log_dir.mkdir(exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    max_bytes = int(log_config.get('max_file_size_mb', 10)) * 1024 * 1024
    backup_count = int(log_config.get('backup_count', 5))

    file_handler = RotatingFileHandler(
        log_dir / 'schedule_manager.log',
        maxBytes=max_bytes,
        backupCount=backup_count
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.WARNING))

    logging.info("Logging initialized")


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logging.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_event.set()


async def main():
    """Main entry point for the application."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = Config()
        setup_logging(config)

        logger = logging.getLogger(__name__)
        logger.info("=" * 60)
        logger.info(f"Schedule Manager v{__version__}")
        logger.info("=" * 60)

        location = config.location
        logger.info(
            f"Location: lat={location['latitude']}, lon={location['longitude']}, "
            f"tz={location.get('timezone', 'UTC')}"
        )
        logger.info(f"Configured devices: {len(config.devices.get('items', []))}")

        manager = ScheduleManager(config)
        await manager.run(shutdown_event)

    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
