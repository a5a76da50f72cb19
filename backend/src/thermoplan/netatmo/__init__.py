"""Netatmo thermostat integration: configuration, logging and HTTP client."""

from __future__ import annotations

from .client import NetatmoAPIError, NetatmoClient
from .utils import configure_logging, logger

__all__ = ["NetatmoAPIError", "NetatmoClient", "configure_logging", "logger"]
