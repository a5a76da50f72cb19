"""Audit trail for scenario saves, generation runs and command executions."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from functools import lru_cache
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .database import (
    from_iso,
    get_engine,
    get_session_factory,
    is_database_configured,
    to_iso,
)
from .db_models import EventModel


@dataclass(frozen=True)
class Event:
    """Represents a recorded audit event."""

    id: int | None
    timestamp: datetime
    action: str
    actor: str | None
    subject_type: str
    subject_id: str | None
    reason: str | None
    metadata: dict[str, Any]


class EventRepository(Protocol):
    def record(self, event: Event) -> Event:
        ...

    def list_recent(
        self, limit: int = 100, *, subject_id: str | None = None
    ) -> list[Event]:
        ...


class InMemoryEventRepository(EventRepository):
    """Event store used when no database is configured."""

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = Lock()
        self._counter = 0

    def record(self, event: Event) -> Event:
        with self._lock:
            self._counter += 1
            stored = replace(event, id=self._counter)
            self._events.append(stored)
            return stored

    def list_recent(
        self, limit: int = 100, *, subject_id: str | None = None
    ) -> list[Event]:
        with self._lock:
            events = [
                event
                for event in self._events
                if subject_id is None or event.subject_id == subject_id
            ]
        return list(reversed(events[-limit:]))


def _row_to_event(row: EventModel) -> Event:
    return Event(
        id=row.id,
        timestamp=from_iso(row.timestamp),
        action=row.action,
        actor=row.actor,
        subject_type=row.subject_type,
        subject_id=row.subject_id,
        reason=row.reason,
        metadata=json.loads(row.metadata_json or "{}"),
    )


class SQLEventRepository(EventRepository):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record(self, event: Event) -> Event:
        model = EventModel(
            timestamp=to_iso(event.timestamp),
            action=event.action,
            actor=event.actor,
            subject_type=event.subject_type,
            subject_id=event.subject_id,
            reason=event.reason,
            metadata_json=json.dumps(event.metadata, default=str)
            if event.metadata
            else None,
        )
        with self._session_factory() as session:
            session.add(model)
            session.commit()
            session.refresh(model)
            return _row_to_event(model)

    def list_recent(
        self, limit: int = 100, *, subject_id: str | None = None
    ) -> list[Event]:
        with self._session_factory() as session:
            stmt = select(EventModel).order_by(EventModel.id.desc()).limit(limit)
            if subject_id is not None:
                stmt = stmt.where(EventModel.subject_id == subject_id)
            rows = session.execute(stmt).scalars().all()
            return [_row_to_event(row) for row in rows]


@lru_cache
def _default_event_repository() -> InMemoryEventRepository:
    return InMemoryEventRepository()


@lru_cache
def _sql_event_repository() -> SQLEventRepository:
    return SQLEventRepository(get_session_factory())


def get_event_repository() -> EventRepository:
    """Return the configured event repository."""
    if is_database_configured() and get_engine() is not None:
        return _sql_event_repository()
    return _default_event_repository()


def record_event(
    *,
    action: str,
    subject_type: str,
    subject_id: str | None = None,
    actor: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> Event:
    """Persist an audit event."""
    event = Event(
        id=None,
        timestamp=timestamp or datetime.now(tz=UTC),
        action=action,
        actor=actor,
        subject_type=subject_type,
        subject_id=subject_id,
        reason=reason,
        metadata=metadata or {},
    )
    return get_event_repository().record(event)


def list_recent_events(limit: int = 100, *, subject_id: str | None = None) -> list[Event]:
    return get_event_repository().list_recent(limit, subject_id=subject_id)


__all__ = [
    "Event",
    "EventRepository",
    "InMemoryEventRepository",
    "SQLEventRepository",
    "record_event",
    "list_recent_events",
    "get_event_repository",
]
