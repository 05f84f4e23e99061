import sys
from typing import Optional

from loguru import logger

from strategy_engine.core.config import Settings, get_settings


def setup_logging(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    log_settings = settings.logging

    logger.remove()

    # Console Handler
    logger.add(
        sys.stderr,
        format=log_settings.format,
        level=log_settings.level,
        colorize=True,
    )

    if log_settings.file_enabled:
        # File Handler (JSON for structured logging)
        logger.add(
            log_settings.file_path,
            rotation=log_settings.file_rotation,
            retention=log_settings.file_retention,
            compression="zip",
            serialize=True,
            level=log_settings.level,
        )

        # Error File Handler
        logger.add(
            log_settings.error_file_path,
            rotation=log_settings.file_rotation,
            retention=log_settings.file_retention,
            level="ERROR",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logging initialized ({settings.ENVIRONMENT})")
