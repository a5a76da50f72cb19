"""Per-user preheat/eco scenario repositories and preheat timing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo
from functools import lru_cache
from threading import Lock
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import (
    from_iso,
    get_engine,
    get_session_factory,
    is_database_configured,
    to_iso,
)
from .db_models import ScenarioModel
from .netatmo.utils import logger
from .schemas import MIN_PREHEAT_MINUTES, ScenarioConfig, ScenarioUpdateRequest
from .timeofday import local_date


class ScenarioStoreError(RuntimeError):
    """Raised when the scenario store cannot read or persist a record."""


def _now() -> datetime:
    return datetime.now(UTC)


def compute_preheat_start(
    arrival: datetime, scenario: ScenarioConfig, tz: tzinfo = UTC
) -> datetime:
    """Return the instant heating should start for a guest arriving at ``arrival``.

    Absolute mode pins the start to ``heat_start_time_of_day`` on the arrival's
    calendar date (as seen in ``tz``). Relative mode, and absolute mode without
    a configured start time, count back ``preheat_minutes`` (never fewer than
    five) from the arrival instant.
    """
    heat_start = scenario.heat_start_time
    if scenario.preheat_mode == "absolute" and heat_start is not None:
        return heat_start.combine(local_date(arrival, tz), tz)
    minutes = max(MIN_PREHEAT_MINUTES, scenario.preheat_minutes)
    return arrival - timedelta(minutes=minutes)


def merge_scenario(
    current: ScenarioConfig, update: ScenarioUpdateRequest
) -> ScenarioConfig:
    data = current.model_dump()
    changes = update.model_dump(exclude_unset=True)
    # Only the heat start may be cleared; null elsewhere means "unchanged".
    data.update(
        {
            key: value
            for key, value in changes.items()
            if value is not None or key == "heat_start_time_of_day"
        }
    )
    data["updated_at"] = _now()
    merged = ScenarioConfig.model_validate(data)
    heat_start = merged.heat_start_time
    if (
        merged.preheat_mode == "absolute"
        and heat_start is not None
        and heat_start > merged.arrival_time
    ):
        logger.bind(
            user_id=merged.user_id,
            heat_start=str(heat_start),
            arrival=merged.arrival_time_of_day,
        ).warning("Absolute heat start is later than the arrival time")
    return merged


# Repository protocol ---------------------------------------------------------


class ScenarioRepository(Protocol):
    def get(self, user_id: str) -> ScenarioConfig:
        ...

    def save(self, user_id: str, update: ScenarioUpdateRequest) -> ScenarioConfig:
        ...


class InMemoryScenarioRepository(ScenarioRepository):
    def __init__(self) -> None:
        self._scenarios: dict[str, ScenarioConfig] = {}
        self._lock = Lock()

    def get(self, user_id: str) -> ScenarioConfig:
        with self._lock:
            stored = self._scenarios.get(user_id)
        if stored is None:
            return ScenarioConfig.defaults(user_id)
        return stored.model_copy()

    def save(self, user_id: str, update: ScenarioUpdateRequest) -> ScenarioConfig:
        with self._lock:
            current = self._scenarios.get(user_id) or ScenarioConfig.defaults(user_id)
            merged = merge_scenario(current, update)
            self._scenarios[user_id] = merged
        return merged.model_copy()

    def clear(self) -> None:
        with self._lock:
            self._scenarios.clear()


def _model_to_scenario(model: ScenarioModel) -> ScenarioConfig:
    return ScenarioConfig(
        user_id=model.user_id,
        preheat_mode=model.preheat_mode,
        preheat_minutes=model.preheat_minutes,
        heat_start_time_of_day=model.heat_start_time_of_day,
        arrival_time_of_day=model.arrival_time_of_day,
        arrival_target_temp=model.arrival_target_temp,
        eco_time_of_day=model.eco_time_of_day,
        eco_target_temp=model.eco_target_temp,
        updated_at=from_iso(model.updated_at),
    )


def _scenario_to_model(scenario: ScenarioConfig) -> ScenarioModel:
    return ScenarioModel(
        user_id=scenario.user_id,
        preheat_mode=scenario.preheat_mode,
        preheat_minutes=scenario.preheat_minutes,
        heat_start_time_of_day=scenario.heat_start_time_of_day,
        arrival_time_of_day=scenario.arrival_time_of_day,
        arrival_target_temp=scenario.arrival_target_temp,
        eco_time_of_day=scenario.eco_time_of_day,
        eco_target_temp=scenario.eco_target_temp,
        updated_at=to_iso(scenario.updated_at or _now()),
    )


class SqlScenarioRepository(ScenarioRepository):
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    def get(self, user_id: str) -> ScenarioConfig:
        try:
            with self._session_factory() as session:
                row = session.get(ScenarioModel, user_id)
                if row is None:
                    return ScenarioConfig.defaults(user_id)
                return _model_to_scenario(row)
        except SQLAlchemyError as exc:
            raise ScenarioStoreError(f"Failed to load scenario: {exc}") from exc

    def save(self, user_id: str, update: ScenarioUpdateRequest) -> ScenarioConfig:
        try:
            with self._session_factory() as session:
                row = session.get(ScenarioModel, user_id)
                current = (
                    _model_to_scenario(row)
                    if row is not None
                    else ScenarioConfig.defaults(user_id)
                )
                merged = merge_scenario(current, update)
                session.merge(_scenario_to_model(merged))
                session.commit()
                return merged
        except SQLAlchemyError as exc:
            raise ScenarioStoreError(f"Failed to save scenario: {exc}") from exc


# Repository factory ----------------------------------------------------------


@lru_cache
def _default_scenario_repository() -> InMemoryScenarioRepository:
    return InMemoryScenarioRepository()


@lru_cache
def _sql_scenario_repository() -> SqlScenarioRepository:
    return SqlScenarioRepository()


def get_scenario_repository() -> ScenarioRepository:
    """Return the configured scenario repository."""
    if is_database_configured() and get_engine() is not None:
        return _sql_scenario_repository()
    return _default_scenario_repository()
