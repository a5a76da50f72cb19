"""Repositories for persisted thermostat schedule entries."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from functools import lru_cache
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import (
    from_iso,
    get_engine,
    get_session_factory,
    is_database_configured,
    to_iso,
)
from .db_models import ScheduleEntryModel
from .schemas import EntryStatus, EntryType, ScheduleEntry, ScheduleUpdateRequest

# Utility ---------------------------------------------------------------------


class ScheduleStoreError(RuntimeError):
    """Raised when the persistence layer fails; callers must not swallow it."""


def _now() -> datetime:
    return datetime.now(UTC)


def new_entry_id() -> str:
    return str(uuid.uuid4())


def _entry_to_model(entry: ScheduleEntry) -> ScheduleEntryModel:
    return ScheduleEntryModel(
        id=entry.id,
        user_id=entry.user_id,
        user_room_id=entry.user_room_id,
        home_id=entry.home_id,
        target_room_id=entry.target_room_id,
        module_id=entry.module_id,
        type=entry.type,
        mode=entry.mode,
        temp=entry.temp,
        start_time=to_iso(entry.start_time),
        end_time=to_iso(entry.end_time) if entry.end_time else None,
        status=entry.status,
        error=entry.error,
        created_at=to_iso(entry.created_at),
        updated_at=to_iso(entry.updated_at),
    )


def _model_to_entry(model: ScheduleEntryModel) -> ScheduleEntry:
    return ScheduleEntry(
        id=model.id,
        user_id=model.user_id,
        user_room_id=model.user_room_id,
        home_id=model.home_id,
        target_room_id=model.target_room_id,
        module_id=model.module_id,
        type=model.type,
        mode=model.mode,
        temp=model.temp,
        start_time=from_iso(model.start_time),
        end_time=from_iso(model.end_time) if model.end_time else None,
        status=model.status,
        error=model.error,
        created_at=from_iso(model.created_at),
        updated_at=from_iso(model.updated_at),
    )


def _update_fields(update: ScheduleUpdateRequest | dict[str, Any]) -> dict[str, Any]:
    if isinstance(update, ScheduleUpdateRequest):
        return update.model_dump(exclude_unset=True)
    return ScheduleUpdateRequest.model_validate(update).model_dump(exclude_unset=True)


def _apply_update(entry: ScheduleEntry, fields: dict[str, Any]) -> ScheduleEntry:
    # The sibling entry of a heat/stop pair is left untouched.
    data = entry.model_dump()
    data.update(fields)
    data["updated_at"] = _now()
    return ScheduleEntry.model_validate(data)


# Repository protocol ---------------------------------------------------------


class ScheduleRepository(Protocol):
    """Abstraction used by the generator, executor and routers."""

    def list(
        self,
        *,
        user_id: str | None = None,
        from_time: datetime | None = None,
        status: EntryStatus | None = None,
    ) -> list[ScheduleEntry]:
        ...

    def get(self, entry_id: str) -> ScheduleEntry | None:
        ...

    def list_due(self, now: datetime, *, user_id: str | None = None) -> list[ScheduleEntry]:
        ...

    def count_due_now(self, user_id: str, now: datetime) -> int:
        ...

    def next_upcoming(self, user_id: str, now: datetime) -> ScheduleEntry | None:
        ...

    def exists(
        self,
        user_id: str,
        target_room_id: str,
        entry_type: EntryType,
        start_time: datetime,
    ) -> bool:
        ...

    def update(
        self, entry_id: str, update: ScheduleUpdateRequest | dict[str, Any]
    ) -> ScheduleEntry | None:
        ...

    def delete(self, entry_id: str) -> bool:
        ...

    def insert_batch(self, entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
        ...


# In-memory repository --------------------------------------------------------


class InMemoryScheduleRepository(ScheduleRepository):
    def __init__(self) -> None:
        self._entries: dict[str, ScheduleEntry] = {}
        self._lock = Lock()

    def _snapshot(self) -> list[ScheduleEntry]:
        with self._lock:
            entries = [entry.model_copy() for entry in self._entries.values()]
        return sorted(entries, key=lambda entry: entry.start_time)

    def list(
        self,
        *,
        user_id: str | None = None,
        from_time: datetime | None = None,
        status: EntryStatus | None = None,
    ) -> list[ScheduleEntry]:
        entries = self._snapshot()
        if user_id is not None:
            entries = [e for e in entries if e.user_id == user_id]
        if from_time is not None:
            entries = [e for e in entries if e.start_time >= from_time]
        if status is not None:
            entries = [e for e in entries if e.status == status]
        return entries

    def get(self, entry_id: str) -> ScheduleEntry | None:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy() if entry else None

    def list_due(self, now: datetime, *, user_id: str | None = None) -> list[ScheduleEntry]:
        return [
            entry
            for entry in self.list(user_id=user_id, status="pending")
            if entry.start_time <= now
        ]

    def count_due_now(self, user_id: str, now: datetime) -> int:
        return len(self.list_due(now, user_id=user_id))

    def next_upcoming(self, user_id: str, now: datetime) -> ScheduleEntry | None:
        upcoming = self.list(user_id=user_id, from_time=now, status="pending")
        return upcoming[0] if upcoming else None

    def exists(
        self,
        user_id: str,
        target_room_id: str,
        entry_type: EntryType,
        start_time: datetime,
    ) -> bool:
        return any(
            entry.target_room_id == target_room_id
            and entry.type == entry_type
            and entry.start_time == start_time
            for entry in self.list(user_id=user_id)
        )

    def update(
        self, entry_id: str, update: ScheduleUpdateRequest | dict[str, Any]
    ) -> ScheduleEntry | None:
        fields = _update_fields(update)
        with self._lock:
            existing = self._entries.get(entry_id)
            if existing is None:
                return None
            updated = _apply_update(existing, fields)
            self._entries[entry_id] = updated
            return updated.model_copy()

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def insert_batch(self, entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
        batch = [entry.model_copy() for entry in entries]
        with self._lock:
            duplicates = [entry.id for entry in batch if entry.id in self._entries]
            if duplicates:
                raise ScheduleStoreError(
                    f"Schedule entries already exist: {', '.join(duplicates)}"
                )
            for entry in batch:
                self._entries[entry.id] = entry
        return [entry.model_copy() for entry in batch]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# SQLAlchemy repository -------------------------------------------------------


class SqlScheduleRepository(ScheduleRepository):
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    def _session(self) -> Session:
        return self._session_factory()

    def list(
        self,
        *,
        user_id: str | None = None,
        from_time: datetime | None = None,
        status: EntryStatus | None = None,
    ) -> list[ScheduleEntry]:
        stmt = select(ScheduleEntryModel)
        if user_id is not None:
            stmt = stmt.where(ScheduleEntryModel.user_id == user_id)
        if from_time is not None:
            stmt = stmt.where(ScheduleEntryModel.start_time >= to_iso(from_time))
        if status is not None:
            stmt = stmt.where(ScheduleEntryModel.status == status)
        stmt = stmt.order_by(ScheduleEntryModel.start_time.asc())
        try:
            with self._session() as session:
                rows = session.execute(stmt).scalars().all()
                return [_model_to_entry(row) for row in rows]
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to list schedules: {exc}") from exc

    def get(self, entry_id: str) -> ScheduleEntry | None:
        try:
            with self._session() as session:
                row = session.get(ScheduleEntryModel, entry_id)
                return _model_to_entry(row) if row else None
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to load schedule: {exc}") from exc

    def _due_statement(self, now: datetime, user_id: str | None):
        stmt = select(ScheduleEntryModel).where(
            ScheduleEntryModel.status == "pending",
            ScheduleEntryModel.start_time <= to_iso(now),
        )
        if user_id is not None:
            stmt = stmt.where(ScheduleEntryModel.user_id == user_id)
        return stmt

    def list_due(self, now: datetime, *, user_id: str | None = None) -> list[ScheduleEntry]:
        stmt = self._due_statement(now, user_id).order_by(
            ScheduleEntryModel.start_time.asc()
        )
        try:
            with self._session() as session:
                rows = session.execute(stmt).scalars().all()
                return [_model_to_entry(row) for row in rows]
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to select due schedules: {exc}") from exc

    def count_due_now(self, user_id: str, now: datetime) -> int:
        stmt = select(func.count()).select_from(
            self._due_statement(now, user_id).subquery()
        )
        try:
            with self._session() as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to count due schedules: {exc}") from exc

    def next_upcoming(self, user_id: str, now: datetime) -> ScheduleEntry | None:
        stmt = (
            select(ScheduleEntryModel)
            .where(
                ScheduleEntryModel.user_id == user_id,
                ScheduleEntryModel.status == "pending",
                ScheduleEntryModel.start_time >= to_iso(now),
            )
            .order_by(ScheduleEntryModel.start_time.asc())
            .limit(1)
        )
        try:
            with self._session() as session:
                row = session.execute(stmt).scalars().first()
                return _model_to_entry(row) if row else None
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to load next schedule: {exc}") from exc

    def exists(
        self,
        user_id: str,
        target_room_id: str,
        entry_type: EntryType,
        start_time: datetime,
    ) -> bool:
        stmt = (
            select(ScheduleEntryModel.id)
            .where(
                ScheduleEntryModel.user_id == user_id,
                ScheduleEntryModel.target_room_id == target_room_id,
                ScheduleEntryModel.type == entry_type,
                ScheduleEntryModel.start_time == to_iso(start_time),
            )
            .limit(1)
        )
        try:
            with self._session() as session:
                return session.execute(stmt).first() is not None
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to check schedule: {exc}") from exc

    def update(
        self, entry_id: str, update: ScheduleUpdateRequest | dict[str, Any]
    ) -> ScheduleEntry | None:
        fields = _update_fields(update)
        try:
            with self._session() as session:
                existing = session.get(ScheduleEntryModel, entry_id)
                if existing is None:
                    return None
                updated = _apply_update(_model_to_entry(existing), fields)
                session.merge(_entry_to_model(updated))
                session.commit()
                return updated
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to update schedule: {exc}") from exc

    def delete(self, entry_id: str) -> bool:
        try:
            with self._session() as session:
                existing = session.get(ScheduleEntryModel, entry_id)
                if existing is None:
                    return False
                session.delete(existing)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to delete schedule: {exc}") from exc

    def insert_batch(self, entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
        batch = list(entries)
        if not batch:
            return []
        try:
            with self._session() as session:
                session.add_all([_entry_to_model(entry) for entry in batch])
                session.commit()
        except SQLAlchemyError as exc:
            raise ScheduleStoreError(f"Failed to insert schedules: {exc}") from exc
        return batch


# Repository factory ----------------------------------------------------------


@lru_cache
def _default_schedule_repository() -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository()


@lru_cache
def _sql_schedule_repository() -> SqlScheduleRepository:
    return SqlScheduleRepository()


def get_schedule_repository() -> ScheduleRepository:
    """Return the configured schedule repository."""
    if is_database_configured() and get_engine() is not None:
        return _sql_schedule_repository()
    return _default_schedule_repository()
