"""General utilities for the thermostat integration."""

from __future__ import annotations

import os
import sys
from datetime import UTC, datetime

from loguru import logger

_LOGGER_CONFIGURED = False


def configure_logging(*, force: bool = False) -> None:
    """Set up the global Loguru logger with application defaults."""
    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED and not force:
        return

    log_level = os.getenv("THERMOPLAN_LOG_LEVEL", "INFO")
    diagnose = os.getenv("THERMOPLAN_LOG_DIAGNOSE", "false").lower() in {
        "1",
        "true",
        "yes",
        "on",
    }

    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        backtrace=False,
        diagnose=diagnose,
        enqueue=False,
        colorize=True,
    )

    _LOGGER_CONFIGURED = True


def to_epoch_seconds(value: datetime) -> int:
    """Return whole epoch seconds for an aware (or UTC-naive) datetime."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp())


def truncate(text: str, limit: int = 300) -> str:
    """Shorten upstream response bodies before they are stored as errors."""
    if len(text) <= limit:
        return text
    return text[:limit]


configure_logging()

__all__ = [
    "configure_logging",
    "to_epoch_seconds",
    "truncate",
    "logger",
]
