"""Command adapter boundary between schedule entries and the physical thermostat."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Protocol

from .netatmo.client import NetatmoAPIError, NetatmoClient
from .netatmo.config import settings
from .netatmo.utils import logger, to_epoch_seconds
from .schemas import ScheduleEntry

# Netatmo needs an expiry for manual setpoints; used when a heat entry has none.
DEFAULT_MANUAL_DURATION = timedelta(hours=1)


class CommandError(RuntimeError):
    """Raised by adapters when the device rejects or cannot receive a command."""


class InvalidScheduleError(CommandError):
    """Raised when an entry cannot be turned into a device command."""


@dataclass(frozen=True)
class ThermostatCommand:
    """A single, idempotent room setpoint instruction."""

    site_id: str
    room_id: str
    mode: Literal["manual", "home"]
    temp: float | None = None
    expires_at: datetime | None = None


def build_command(entry: ScheduleEntry, now: datetime) -> ThermostatCommand:
    """Translate a schedule entry into the command the adapter should issue."""
    if entry.type == "heat":
        if entry.mode != "manual" or entry.temp is None:
            raise InvalidScheduleError(
                "Invalid heat schedule: requires mode=manual and temp number"
            )
        return ThermostatCommand(
            site_id=entry.home_id,
            room_id=entry.target_room_id,
            mode="manual",
            temp=float(entry.temp),
            expires_at=entry.end_time or now + DEFAULT_MANUAL_DURATION,
        )
    return ThermostatCommand(
        site_id=entry.home_id,
        room_id=entry.target_room_id,
        mode="home",
    )


class CommandAdapter(Protocol):
    """Port over the thermostat control API.

    ``apply`` must be idempotent: sending the same command twice leaves the
    device in the same state as sending it once.
    """

    def apply(self, command: ThermostatCommand) -> None:
        ...


class NetatmoCommandAdapter(CommandAdapter):
    """Adapter issuing commands through ``setroomthermpoint``."""

    def __init__(self, client: NetatmoClient) -> None:
        self._client = client

    def apply(self, command: ThermostatCommand) -> None:
        endtime = (
            to_epoch_seconds(command.expires_at)
            if command.expires_at is not None
            else None
        )
        try:
            self._client.set_room_thermpoint(
                command.site_id,
                command.room_id,
                command.mode,
                temp=command.temp,
                endtime=endtime,
            )
        except NetatmoAPIError as exc:
            raise CommandError(str(exc)) from exc
        logger.bind(
            home_id=command.site_id,
            room_id=command.room_id,
            mode=command.mode,
            temp=command.temp,
        ).info("Thermostat command applied")


def _create_client() -> NetatmoClient:
    return NetatmoClient(
        settings.netatmo_base_url,
        access_token=settings.netatmo_access_token,
        timeout=settings.netatmo_timeout,
    )


def get_command_adapter(client: NetatmoClient | None = None) -> NetatmoCommandAdapter:
    """Build the Netatmo adapter from settings, or around an explicit client."""
    return NetatmoCommandAdapter(client or _create_client())


@contextmanager
def adapter_context() -> Iterator[CommandAdapter]:
    """Yield a configured Netatmo adapter and close its HTTP session afterwards."""
    client = _create_client()
    try:
        yield get_command_adapter(client)
    finally:
        client.close()


__all__ = [
    "CommandAdapter",
    "CommandError",
    "InvalidScheduleError",
    "NetatmoCommandAdapter",
    "ThermostatCommand",
    "adapter_context",
    "build_command",
    "get_command_adapter",
]
