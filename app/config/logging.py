"""
Logging configuration.

Configures the loguru logger with a console sink and a rotating file sink.
"""

import sys

from loguru import logger


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure logger with file rotation.

    Args:
        level: Minimum level for all sinks
        log_file: Path of the rotating log file, None to log to stderr only
    """
    logger.remove()
    logger.add(sys.stderr, level=level)

    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=level,
            encoding="utf-8",
        )

    logger.info("Starting yield accrual service...")
