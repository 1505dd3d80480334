from __future__ import annotations

import sys

from loguru import logger

from .config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """Replace loguru's default sink with one stderr sink at ``LOG_LEVEL``."""

    settings = settings or get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, backtrace=settings.debug, diagnose=False)
