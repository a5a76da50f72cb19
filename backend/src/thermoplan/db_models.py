"""SQLAlchemy ORM models for persisting scenarios, schedule entries, and audit events."""

from __future__ import annotations

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for ORM models."""


class ScenarioModel(Base):
    """ORM model holding the per-user preheat/eco scenario."""

    __tablename__ = "thermostat_scenarios"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    preheat_mode: Mapped[str] = mapped_column(String(16), nullable=False)
    preheat_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    heat_start_time_of_day: Mapped[str | None] = mapped_column(String(5), nullable=True)
    arrival_time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    arrival_target_temp: Mapped[float] = mapped_column(Float, nullable=False)
    eco_time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    eco_target_temp: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class ScheduleEntryModel(Base):
    """ORM model representing one time-stamped thermostat command."""

    __tablename__ = "thermostat_schedules"
    __table_args__ = (
        Index("ix_thermostat_schedules_status_start", "status", "start_time"),
        Index("ix_thermostat_schedules_user_start", "user_id", "start_time"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    home_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    module_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    mode: Mapped[str] = mapped_column(String(8), nullable=False)
    temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_time: Mapped[str] = mapped_column(String(64), nullable=False)
    end_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(64), nullable=False)


class EventModel(Base):
    """Audit log entries for significant system actions."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject_type: Mapped[str] = mapped_column(String(128), nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
