"""API router exposing scenario, schedule and execution endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from . import schemas
from .events import Event, list_recent_events, record_event
from .generator import ScheduleGenerator
from .scenarios import ScenarioStoreError, get_scenario_repository
from .schedule_executor import executor
from .schedules import ScheduleStoreError, get_schedule_repository

router = APIRouter(prefix="/api", tags=["schedules"])


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _resolve_actor(request: Request) -> str:
    header_actor = request.headers.get("x-actor")
    if header_actor:
        candidate = header_actor.strip()
        if candidate:
            return candidate
    return "system"


def _store_failure(exc: Exception) -> HTTPException:
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _event_to_schema(event: Event) -> schemas.AuditEvent:
    return schemas.AuditEvent(
        id=event.id,
        timestamp=event.timestamp,
        action=event.action,
        actor=event.actor,
        subject_type=event.subject_type,
        subject_id=event.subject_id,
        reason=event.reason,
        metadata=event.metadata,
    )


# Scenario --------------------------------------------------------------------


@router.get(
    "/users/{user_id}/scenario",
    response_model=schemas.ScenarioConfig,
    tags=["scenario"],
)
def get_scenario(user_id: str) -> schemas.ScenarioConfig:
    try:
        return get_scenario_repository().get(user_id)
    except ScenarioStoreError as exc:
        raise _store_failure(exc) from exc


@router.put(
    "/users/{user_id}/scenario",
    response_model=schemas.ScenarioConfig,
    tags=["scenario"],
)
def save_scenario(
    user_id: str,
    payload: schemas.ScenarioUpdateRequest,
    request: Request,
) -> schemas.ScenarioConfig:
    try:
        scenario = get_scenario_repository().save(user_id, payload)
    except ScenarioStoreError as exc:
        raise _store_failure(exc) from exc
    record_event(
        action="scenario_saved",
        subject_type="scenario",
        subject_id=user_id,
        actor=_resolve_actor(request),
        metadata={"changes": payload.model_dump(exclude_unset=True, by_alias=True)},
    )
    return scenario


# Schedules -------------------------------------------------------------------


@router.get(
    "/users/{user_id}/schedules",
    response_model=schemas.ScheduleListResponse,
)
def list_schedules(
    user_id: str,
    from_time: Annotated[datetime | None, Query(alias="from")] = None,
) -> schemas.ScheduleListResponse:
    if from_time is not None and from_time.tzinfo is None:
        from_time = from_time.replace(tzinfo=UTC)
    try:
        entries = get_schedule_repository().list(user_id=user_id, from_time=from_time)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    return schemas.ScheduleListResponse(schedules=entries)


@router.get(
    "/users/{user_id}/schedules/summary",
    response_model=schemas.ScheduleSummary,
)
def get_schedule_summary(user_id: str) -> schemas.ScheduleSummary:
    now = _now()
    repo = get_schedule_repository()
    try:
        return schemas.ScheduleSummary(
            due_count=repo.count_due_now(user_id, now),
            next_upcoming=repo.next_upcoming(user_id, now),
        )
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc


@router.post(
    "/users/{user_id}/schedules/generate",
    response_model=schemas.GenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
def generate_schedules(
    user_id: str,
    payload: schemas.GenerateRequest,
    request: Request,
) -> schemas.GenerateResponse:
    generator = ScheduleGenerator()
    try:
        created = generator.generate_bulk(
            user_id, payload.reservations, payload.room_mapping
        )
    except (ScheduleStoreError, ScenarioStoreError) as exc:
        raise _store_failure(exc) from exc
    record_event(
        action="schedules_generated",
        subject_type="user",
        subject_id=user_id,
        actor=_resolve_actor(request),
        metadata={
            "reservations": len(payload.reservations),
            "created": created,
            "user_room_id": payload.room_mapping.user_room_id,
        },
    )
    return schemas.GenerateResponse(created=created)


@router.post(
    "/users/{user_id}/schedules/manual-test",
    response_model=schemas.ManualTestResponse,
    status_code=status.HTTP_201_CREATED,
)
def generate_manual_test(
    user_id: str,
    payload: schemas.ManualTestRequest,
    request: Request,
) -> schemas.ManualTestResponse:
    generator = ScheduleGenerator()
    try:
        pair = generator.generate_manual_test(
            user_id,
            payload.arrival,
            payload.departure,
            payload.preheat_minutes,
            payload.arrival_temp,
            payload.room_mapping,
        )
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    entries = pair.entries() if pair else []
    record_event(
        action="schedules_manual_test",
        subject_type="user",
        subject_id=user_id,
        actor=_resolve_actor(request),
        metadata={"created": len(entries)},
    )
    return schemas.ManualTestResponse(created=len(entries), entries=entries)


@router.post(
    "/users/{user_id}/schedules/run",
    response_model=schemas.RunResult,
)
def run_user_schedules(user_id: str) -> schemas.RunResult:
    try:
        return executor.run_once(user_id=user_id)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc


@router.post("/schedules/run", response_model=schemas.RunResult)
def run_due_schedules() -> schemas.RunResult:
    try:
        return executor.run_once()
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc


@router.get("/schedules/{entry_id}", response_model=schemas.ScheduleEntry)
def get_schedule(entry_id: str) -> schemas.ScheduleEntry:
    try:
        entry = get_schedule_repository().get(entry_id)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    if entry is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    return entry


@router.patch("/schedules/{entry_id}", response_model=schemas.ScheduleEntry)
def update_schedule(
    entry_id: str,
    payload: schemas.ScheduleUpdateRequest,
    request: Request,
) -> schemas.ScheduleEntry:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="No fields provided for update."
        )
    try:
        entry = get_schedule_repository().update(entry_id, payload)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    if entry is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    record_event(
        action="schedule_updated",
        subject_type="schedule",
        subject_id=entry_id,
        actor=_resolve_actor(request),
        metadata={"changes": payload.model_dump(mode="json", exclude_unset=True, by_alias=True)},
    )
    return entry


@router.delete("/schedules/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(entry_id: str, request: Request) -> Response:
    try:
        deleted = get_schedule_repository().delete(entry_id)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    if not deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    record_event(
        action="schedule_deleted",
        subject_type="schedule",
        subject_id=entry_id,
        actor=_resolve_actor(request),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/schedules/{entry_id}/apply", response_model=schemas.ScheduleEntry)
def apply_schedule_now(entry_id: str) -> schemas.ScheduleEntry:
    try:
        entry = executor.apply_now(entry_id)
    except ScheduleStoreError as exc:
        raise _store_failure(exc) from exc
    if entry is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Schedule not found.")
    return entry


# Audit -----------------------------------------------------------------------


@router.get("/events", response_model=schemas.EventListResponse, tags=["events"])
def list_events(
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    subject_id: Annotated[str | None, Query(alias="subjectId")] = None,
) -> schemas.EventListResponse:
    events = list_recent_events(limit, subject_id=subject_id)
    return schemas.EventListResponse(events=[_event_to_schema(event) for event in events])
