"""Pydantic models for the thermostat scheduling backend."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .timeofday import TimeOfDay, TimeOfDayStr

PreheatMode = Literal["relative", "absolute"]
EntryType = Literal["heat", "stop"]
EntryMode = Literal["manual", "home"]
EntryStatus = Literal["pending", "applied", "failed"]

DEFAULT_PREHEAT_MODE: PreheatMode = "relative"
DEFAULT_PREHEAT_MINUTES = 240
MIN_PREHEAT_MINUTES = 5
DEFAULT_ARRIVAL_TIME = "15:00"
DEFAULT_ARRIVAL_TEMP = 20.0
DEFAULT_ECO_TIME = "10:00"
DEFAULT_ECO_TEMP = 16.0


def _to_camel(string: str) -> str:
    first, *rest = string.split("_")
    return first + "".join(word.capitalize() for word in rest)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Scenario models


class ScenarioConfig(CamelModel):
    user_id: str
    preheat_mode: PreheatMode = DEFAULT_PREHEAT_MODE
    preheat_minutes: int = Field(default=DEFAULT_PREHEAT_MINUTES, ge=MIN_PREHEAT_MINUTES)
    heat_start_time_of_day: TimeOfDayStr | None = None
    arrival_time_of_day: TimeOfDayStr = DEFAULT_ARRIVAL_TIME
    arrival_target_temp: float = DEFAULT_ARRIVAL_TEMP
    eco_time_of_day: TimeOfDayStr = DEFAULT_ECO_TIME
    eco_target_temp: float = DEFAULT_ECO_TEMP
    updated_at: datetime | None = None

    @classmethod
    def defaults(cls, user_id: str) -> ScenarioConfig:
        """The configuration a user gets before saving anything."""
        return cls(user_id=user_id)

    @property
    def arrival_time(self) -> TimeOfDay:
        return TimeOfDay.parse(self.arrival_time_of_day)

    @property
    def eco_time(self) -> TimeOfDay:
        return TimeOfDay.parse(self.eco_time_of_day)

    @property
    def heat_start_time(self) -> TimeOfDay | None:
        if not self.heat_start_time_of_day:
            return None
        return TimeOfDay.parse(self.heat_start_time_of_day)


class ScenarioUpdateRequest(CamelModel):
    preheat_mode: PreheatMode | None = None
    preheat_minutes: int | None = Field(default=None, ge=MIN_PREHEAT_MINUTES)
    heat_start_time_of_day: TimeOfDayStr | None = None
    arrival_time_of_day: TimeOfDayStr | None = None
    arrival_target_temp: float | None = None
    eco_time_of_day: TimeOfDayStr | None = None
    eco_target_temp: float | None = None


# ---------------------------------------------------------------------------
# Reservation / room mapping inputs


class Reservation(CamelModel):
    id: str
    property_name: str
    check_in_date: date
    check_out_date: date


class ThermostatRoom(CamelModel):
    id: str
    name: str


class RoomMapping(CamelModel):
    user_room_id: str
    home_id: str
    module_id: str | None = None
    selected_room_id: str | None = None
    rooms: list[ThermostatRoom] = Field(default_factory=list)


class RoomPlan(CamelModel):
    """One mapped room and the reservations known for it."""

    room_mapping: RoomMapping
    reservations: list[Reservation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Schedule entries


class ScheduleEntry(CamelModel):
    id: str
    user_id: str
    user_room_id: str
    home_id: str
    target_room_id: str
    module_id: str | None = None
    type: EntryType
    mode: EntryMode
    temp: float | None = None
    start_time: datetime
    end_time: datetime | None = None
    status: EntryStatus = "pending"
    error: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class SchedulePair(CamelModel):
    heat: ScheduleEntry
    stop: ScheduleEntry

    def entries(self) -> list[ScheduleEntry]:
        return [self.heat, self.stop]


class ScheduleUpdateRequest(CamelModel):
    user_room_id: str | None = None
    home_id: str | None = None
    target_room_id: str | None = None
    module_id: str | None = None
    type: EntryType | None = None
    mode: EntryMode | None = None
    temp: float | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: EntryStatus | None = None
    error: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class ScheduleListResponse(CamelModel):
    schedules: list[ScheduleEntry]


class ScheduleSummary(CamelModel):
    due_count: int = Field(..., ge=0)
    next_upcoming: ScheduleEntry | None = None


class GenerateRequest(CamelModel):
    reservations: list[Reservation] = Field(default_factory=list)
    room_mapping: RoomMapping


class GenerateResponse(CamelModel):
    created: int = Field(..., ge=0)


class ManualTestRequest(CamelModel):
    arrival: datetime
    departure: datetime
    preheat_minutes: int = Field(default=DEFAULT_PREHEAT_MINUTES, ge=MIN_PREHEAT_MINUTES)
    arrival_temp: float = DEFAULT_ARRIVAL_TEMP
    room_mapping: RoomMapping

    @field_validator("arrival", "departure")
    @classmethod
    def _normalize_timestamps(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ManualTestResponse(CamelModel):
    created: int = Field(..., ge=0)
    entries: list[ScheduleEntry] = Field(default_factory=list)


class ExecutionResult(CamelModel):
    id: str
    status: EntryStatus
    error: str | None = None


class RunResult(CamelModel):
    processed_count: int = Field(..., ge=0)
    results: list[ExecutionResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Audit events


class AuditEvent(BaseModel):
    id: int | None = None
    timestamp: datetime
    action: str
    actor: str | None = None
    subject_type: str
    subject_id: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EventListResponse(BaseModel):
    events: list[AuditEvent] = Field(default_factory=list)


__all__ = [
    "ScenarioConfig",
    "ScenarioUpdateRequest",
    "Reservation",
    "ThermostatRoom",
    "RoomMapping",
    "RoomPlan",
    "ScheduleEntry",
    "SchedulePair",
    "ScheduleUpdateRequest",
    "ScheduleListResponse",
    "ScheduleSummary",
    "GenerateRequest",
    "GenerateResponse",
    "ManualTestRequest",
    "ManualTestResponse",
    "ExecutionResult",
    "RunResult",
    "AuditEvent",
    "EventListResponse",
]
