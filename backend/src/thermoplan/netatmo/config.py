"""Configuration helpers for the thermostat client and scheduling engine."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

DEFAULT_BASE_URL = "https://api.netatmo.com"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_RESERVATION_WINDOW_DAYS = 60
DEFAULT_EXECUTOR_INTERVAL = 60


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(value: str | None, default: int, *, name: str) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.bind(variable=name, value=value).warning(
            "Invalid integer in environment; using default"
        )
        return default


def _candidate_env_paths(start: Path) -> Iterable[Path]:
    """Yield plausible .env locations from closest to farthest."""
    override = os.environ.get("THERMOPLAN_ENV_FILE")
    if override:
        yield Path(override).expanduser()

    for directory in (start, *start.parents):
        yield directory / ".env"


def _discover_env_path() -> Path | None:
    """Return the first .env path that exists, if any."""
    package_dir = Path(__file__).resolve().parent
    for candidate in _candidate_env_paths(package_dir):
        if candidate.exists():
            return candidate
    return None


def _load_env_file(path: Path | None = None) -> None:
    """Populate os.environ with values from a .env file if present."""
    env_path = path or _discover_env_path()
    if env_path is None or not env_path.exists():
        logger.debug("No .env file discovered for configuration")
        return

    logger.bind(path=str(env_path)).info("Loading environment variables from .env")
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        # Respect existing environment variables so runtime overrides win.
        os.environ.setdefault(key, value)


_load_env_file()


@dataclass(frozen=True)
class Settings:
    """Typed accessors for configuration derived from the environment."""

    netatmo_access_token: str | None
    netatmo_base_url: str
    netatmo_timeout: int
    timezone: str
    reservation_window_days: int
    executor_enabled: bool
    executor_interval: int

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            logger.bind(timezone=self.timezone).warning(
                "Unknown site timezone; defaulting to UTC"
            )
            return ZoneInfo(DEFAULT_TIMEZONE)

    @classmethod
    def from_env(cls) -> Settings:
        access_token = os.environ.get("NETATMO_ACCESS_TOKEN") or None
        base_url = os.environ.get("NETATMO_BASE_URL", DEFAULT_BASE_URL)
        timeout = _parse_int(
            os.environ.get("NETATMO_TIMEOUT"), 10, name="NETATMO_TIMEOUT"
        )
        timezone = os.environ.get("THERMOPLAN_TIMEZONE", DEFAULT_TIMEZONE)
        window_days = _parse_int(
            os.environ.get("THERMOPLAN_RESERVATION_WINDOW_DAYS"),
            DEFAULT_RESERVATION_WINDOW_DAYS,
            name="THERMOPLAN_RESERVATION_WINDOW_DAYS",
        )
        executor_enabled_env = os.environ.get("THERMOPLAN_EXECUTOR_ENABLED")
        executor_enabled = (
            _parse_bool(executor_enabled_env)
            if executor_enabled_env is not None
            else False
        )
        executor_interval = _parse_int(
            os.environ.get("THERMOPLAN_EXECUTOR_INTERVAL"),
            DEFAULT_EXECUTOR_INTERVAL,
            name="THERMOPLAN_EXECUTOR_INTERVAL",
        )

        logger.bind(
            base_url=base_url,
            timezone=timezone,
            executor_enabled=executor_enabled,
        ).info("Configuration loaded from environment")

        return cls(
            netatmo_access_token=access_token,
            netatmo_base_url=base_url,
            netatmo_timeout=timeout,
            timezone=timezone,
            reservation_window_days=max(window_days, 1),
            executor_enabled=executor_enabled,
            executor_interval=max(executor_interval, 1),
        )


settings = Settings.from_env()
