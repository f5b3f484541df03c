"""Loguru sink setup for the bridge processor"""

import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None, rotation: str = "10 MB"):
    """
    Replace the default loguru sink

    Args:
        level: Minimum level for all sinks
        log_file: Optional file sink path
        rotation: Rotation policy for the file sink
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level.upper(),
            rotation=rotation,
            retention=10,
            enqueue=True,
            format=LOG_FORMAT,
        )
        logger.debug(f"File logging enabled: {log_file}")
