from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import pytest

# Ensure we operate against the in-memory repositories during tests.
os.environ["THERMOPLAN_DB_MODE"] = "memory"
os.environ["THERMOPLAN_DB_URL"] = ""
os.environ.setdefault("THERMOPLAN_TIMEZONE", "UTC")
os.environ.setdefault("THERMOPLAN_EXECUTOR_ENABLED", "false")

from thermoplan.commands import CommandError, ThermostatCommand  # noqa: E402
from thermoplan.scenarios import (  # noqa: E402
    InMemoryScenarioRepository,
    _default_scenario_repository,
)
from thermoplan.schedules import (  # noqa: E402
    InMemoryScheduleRepository,
    _default_schedule_repository,
    new_entry_id,
)
from thermoplan.schemas import ScheduleEntry  # noqa: E402

CREATED_AT = datetime(2025, 6, 1, 8, 0, tzinfo=UTC)


def make_entry(
    start: datetime,
    *,
    user_id: str = "user-1",
    entry_type: str = "heat",
    status: str = "pending",
    room: str = "nt-1",
) -> ScheduleEntry:
    heat = entry_type == "heat"
    return ScheduleEntry(
        id=new_entry_id(),
        user_id=user_id,
        user_room_id="room-studio",
        home_id="home-1",
        target_room_id=room,
        type=entry_type,
        mode="manual" if heat else "home",
        temp=20 if heat else None,
        start_time=start,
        end_time=start + timedelta(days=2) if heat else None,
        status=status,
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


class FakeThermostat:
    """Idempotent stand-in for the device API: keeps the last command per room."""

    def __init__(self, failing_rooms: set[str] | None = None) -> None:
        self.failing_rooms = set(failing_rooms or ())
        self.state: dict[tuple[str, str], ThermostatCommand] = {}
        self.calls: list[ThermostatCommand] = []

    def apply(self, command: ThermostatCommand) -> None:
        self.calls.append(command)
        if command.room_id in self.failing_rooms:
            raise CommandError(f"Upstream 500: room {command.room_id} unreachable")
        self.state[(command.site_id, command.room_id)] = command

    @contextmanager
    def context(self):
        yield self


@pytest.fixture
def thermostat() -> FakeThermostat:
    return FakeThermostat()


@pytest.fixture
def schedule_repo() -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository()


@pytest.fixture
def scenario_repo() -> InMemoryScenarioRepository:
    return InMemoryScenarioRepository()


@pytest.fixture(autouse=True)
def _reset_default_repositories():
    _default_schedule_repository().clear()
    _default_scenario_repository().clear()
    yield
    _default_schedule_repository().clear()
    _default_scenario_repository().clear()
