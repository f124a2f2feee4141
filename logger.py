"""
Logging configuration for the catalog API.

Provides a centralized logger configured from LOG_LEVEL.
"""
import logging
import sys
from typing import Optional

from config import settings

logger = logging.getLogger("storefront")
logger.setLevel(settings.log_level)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

# Avoid duplicate records through the root logger
logger.propagate = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional name for the logger (appended to 'storefront')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"storefront.{name}")
    return logger
