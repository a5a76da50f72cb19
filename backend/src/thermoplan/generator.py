"""Turn reservations and a scenario into heat/stop schedule entry pairs."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo

from .netatmo.config import settings
from .netatmo.utils import logger
from .reservations import ReservationFeed, ReservationFeedError, forward_window, within_window
from .scenarios import ScenarioRepository, compute_preheat_start, get_scenario_repository
from .schedules import ScheduleRepository, get_schedule_repository, new_entry_id
from .schemas import (
    MIN_PREHEAT_MINUTES,
    Reservation,
    RoomMapping,
    ScenarioConfig,
    ScheduleEntry,
    SchedulePair,
)
from .timeofday import local_date


def _now() -> datetime:
    return datetime.now(UTC)


def _normalize_name(value: str) -> str:
    return " ".join(value.split()).casefold()


def resolve_target_room(
    room_mapping: RoomMapping, property_name: str | None = None
) -> str | None:
    """Return the device-addressable room for a logical room.

    An explicitly selected room wins; otherwise the property name is matched
    against the site's room names, ignoring case and extra whitespace.
    """
    if room_mapping.selected_room_id:
        return room_mapping.selected_room_id
    if not property_name:
        return None
    needle = _normalize_name(property_name)
    for room in room_mapping.rooms:
        if _normalize_name(room.name) == needle:
            return room.id
    return None


def build_pair(
    *,
    user_id: str,
    room_mapping: RoomMapping,
    target_room_id: str,
    heat_start: datetime,
    eco: datetime,
    arrival_temp: float,
    created_at: datetime,
) -> SchedulePair:
    common = {
        "user_id": user_id,
        "user_room_id": room_mapping.user_room_id,
        "home_id": room_mapping.home_id,
        "target_room_id": target_room_id,
        "module_id": room_mapping.module_id,
        "status": "pending",
        "error": None,
        "created_at": created_at,
        "updated_at": created_at,
    }
    heat = ScheduleEntry(
        id=new_entry_id(),
        type="heat",
        mode="manual",
        temp=arrival_temp,
        start_time=heat_start,
        end_time=eco,
        **common,
    )
    stop = ScheduleEntry(
        id=new_entry_id(),
        type="stop",
        mode="home",
        temp=None,
        start_time=eco,
        end_time=None,
        **common,
    )
    return SchedulePair(heat=heat, stop=stop)


@dataclass
class ScheduleGenerator:
    scenarios: ScenarioRepository = field(default_factory=get_scenario_repository)
    schedules: ScheduleRepository = field(default_factory=get_schedule_repository)
    tz: tzinfo = field(default_factory=lambda: settings.tz)
    clock: Callable[[], datetime] = _now

    def generate_for_reservation(
        self,
        reservation: Reservation,
        scenario: ScenarioConfig,
        room_mapping: RoomMapping,
        *,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> SchedulePair | None:
        """Build the preheat/eco pair for one reservation, or None when skipped."""
        current = now or self.clock()
        arrival = scenario.arrival_time.combine(reservation.check_in_date, self.tz)
        heat_start = compute_preheat_start(arrival, scenario, self.tz)
        if heat_start <= current:
            logger.bind(
                reservation_id=reservation.id, heat_start=heat_start.isoformat()
            ).debug("Preheat start already passed; skipping reservation")
            return None

        eco = scenario.eco_time.combine(reservation.check_out_date, self.tz)
        if eco <= heat_start:
            logger.bind(
                reservation_id=reservation.id,
                heat_start=heat_start.isoformat(),
                eco=eco.isoformat(),
            ).debug("Check-out precedes preheat start; skipping reservation")
            return None

        target_room_id = resolve_target_room(room_mapping, reservation.property_name)
        if target_room_id is None:
            logger.bind(
                reservation_id=reservation.id,
                property_name=reservation.property_name,
            ).debug("No thermostat room matches reservation; skipping")
            return None

        return build_pair(
            user_id=user_id or scenario.user_id,
            room_mapping=room_mapping,
            target_room_id=target_room_id,
            heat_start=heat_start,
            eco=eco,
            arrival_temp=scenario.arrival_target_temp,
            created_at=current,
        )

    def _unseen(self, entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
        fresh: list[ScheduleEntry] = []
        seen: set[tuple[str, str, str, datetime]] = set()
        for entry in entries:
            key = (entry.user_id, entry.target_room_id, entry.type, entry.start_time)
            if key in seen:
                continue
            seen.add(key)
            if self.schedules.exists(
                entry.user_id, entry.target_room_id, entry.type, entry.start_time
            ):
                continue
            fresh.append(entry)
        return fresh

    def generate_bulk(
        self,
        user_id: str,
        reservations: Iterable[Reservation],
        room_mapping: RoomMapping,
        *,
        scenario: ScenarioConfig | None = None,
        now: datetime | None = None,
    ) -> int:
        """Generate and persist pairs for every schedulable reservation.

        Returns the number of entries written. Entries already stored for the
        same room, type and start instant are not written again.
        """
        current = now or self.clock()
        scenario = scenario or self.scenarios.get(user_id)
        candidates: list[ScheduleEntry] = []
        for reservation in reservations:
            pair = self.generate_for_reservation(
                reservation, scenario, room_mapping, user_id=user_id, now=current
            )
            if pair is not None:
                candidates.extend(pair.entries())

        entries = self._unseen(candidates)
        if not entries:
            return 0
        created = self.schedules.insert_batch(entries)
        logger.bind(user_id=user_id, created=len(created)).info(
            "Schedule entries generated"
        )
        return len(created)

    def generate_manual_test(
        self,
        user_id: str,
        arrival: datetime,
        departure: datetime,
        preheat_minutes: int,
        arrival_temp: float,
        room_mapping: RoomMapping,
        *,
        now: datetime | None = None,
    ) -> SchedulePair | None:
        """Build and persist a pair from operator-supplied instants."""
        current = now or self.clock()
        heat_start = arrival - timedelta(minutes=max(MIN_PREHEAT_MINUTES, preheat_minutes))
        if heat_start <= current:
            logger.bind(user_id=user_id, heat_start=heat_start.isoformat()).info(
                "Manual test preheat start already passed; nothing created"
            )
            return None
        if departure <= heat_start:
            logger.bind(user_id=user_id, departure=departure.isoformat()).info(
                "Manual test departure precedes preheat start; nothing created"
            )
            return None

        target_room_id = resolve_target_room(room_mapping)
        if target_room_id is None and len(room_mapping.rooms) == 1:
            target_room_id = room_mapping.rooms[0].id
        if target_room_id is None:
            logger.bind(user_id=user_id, user_room_id=room_mapping.user_room_id).info(
                "Manual test has no target room; nothing created"
            )
            return None

        pair = build_pair(
            user_id=user_id,
            room_mapping=room_mapping,
            target_room_id=target_room_id,
            heat_start=heat_start,
            eco=departure,
            arrival_temp=arrival_temp,
            created_at=current,
        )
        self.schedules.insert_batch(pair.entries())
        return pair

    def plan_for_user(
        self,
        user_id: str,
        feed: ReservationFeed,
        room_mappings: Iterable[RoomMapping],
        *,
        window_days: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Pull upcoming reservations for each mapped room and generate pairs."""
        current = now or self.clock()
        scenario = self.scenarios.get(user_id)
        start, end = forward_window(
            local_date(current, self.tz), window_days or settings.reservation_window_days
        )
        created = 0
        for mapping in room_mappings:
            try:
                reservations = feed.list_reservations(mapping.user_room_id, start, end)
            except ReservationFeedError as exc:
                logger.bind(user_id=user_id, user_room_id=mapping.user_room_id).warning(
                    "Reservation feed failed for room: {}", exc
                )
                continue
            created += self.generate_bulk(
                user_id,
                within_window(reservations, start, end),
                mapping,
                scenario=scenario,
                now=current,
            )
        return created


__all__ = ["ScheduleGenerator", "build_pair", "resolve_target_room"]
