"""Loguru sink configuration."""

import os
import sys
from typing import Any, TextIO

from loguru import logger

LOG_LEVEL_ENV = "REPOSPECTOR_LOG_LEVEL"
DEFAULT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(
    level: str | None = None, sink: TextIO | Any = sys.stderr
) -> int:
    """Replace loguru's default handler with one at ``level``.

    Args:
        level: Log level name; falls back to ``$REPOSPECTOR_LOG_LEVEL`` then INFO
        sink: Any loguru sink (stream, path, callable)

    Returns:
        The handler id, usable with ``logger.remove``
    """
    resolved = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logger.remove()
    return logger.add(sink, level=resolved, format=DEFAULT_FORMAT)
