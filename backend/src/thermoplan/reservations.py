"""Read-only reservation feed boundary."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from typing import Protocol

from .schemas import Reservation


class ReservationFeedError(RuntimeError):
    """Raised when the booking channel cannot return reservations for a room."""


class ReservationFeed(Protocol):
    def list_reservations(
        self, user_room_id: str, start: date, end: date
    ) -> list[Reservation]:
        ...


def forward_window(today: date, days: int) -> tuple[date, date]:
    return today, today + timedelta(days=days)


def within_window(
    reservations: Iterable[Reservation], start: date, end: date
) -> list[Reservation]:
    """Keep reservations whose check-in falls inside ``[start, end]``."""
    return [r for r in reservations if start <= r.check_in_date <= end]


class StaticReservationFeed(ReservationFeed):
    """Feed backed by a fixed mapping of logical room id to reservations."""

    def __init__(self, reservations: Mapping[str, Iterable[Reservation]]) -> None:
        self._reservations = {
            room_id: list(items) for room_id, items in reservations.items()
        }

    def list_reservations(
        self, user_room_id: str, start: date, end: date
    ) -> list[Reservation]:
        return within_window(self._reservations.get(user_room_id, []), start, end)


__all__ = [
    "ReservationFeed",
    "ReservationFeedError",
    "StaticReservationFeed",
    "forward_window",
    "within_window",
]
