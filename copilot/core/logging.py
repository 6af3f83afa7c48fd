"""
Logging configuration for the application.
"""
import sys
from pathlib import Path

from loguru import logger as loguru_logger

from copilot.core.config import settings


# Configure Loguru logger
def setup_logger():
    """Configure the logger with custom format and level."""
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    # Remove default handler
    loguru_logger.remove()

    loguru_logger.add(
        sys.stderr,
        format=log_format,
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        loguru_logger.add(
            log_path,
            format=log_format,
            level=settings.LOG_LEVEL,
            rotation="10 MB",
            compression="zip",
            retention="1 month",
        )

    return loguru_logger


# Initialize logger
logger = setup_logger()
