"""Wall-clock time-of-day values ("HH:MM") and their combination with calendar dates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from typing import Annotated

from pydantic import AfterValidator

_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """A minute-resolution wall-clock time such as ``15:00``."""

    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {self.hour}.")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"Minute must be between 0 and 59, got {self.minute}.")

    @classmethod
    def parse(cls, value: str | TimeOfDay) -> TimeOfDay:
        if isinstance(value, TimeOfDay):
            return value
        match = _PATTERN.match(value or "")
        if match is None:
            raise ValueError(f"Invalid time of day {value!r}; expected HH:MM.")
        return cls(int(match.group(1)), int(match.group(2)))

    def combine(self, day: date, tz: tzinfo = UTC) -> datetime:
        """Return this time on ``day`` in ``tz`` as a UTC instant."""
        local = datetime.combine(day, time(self.hour, self.minute), tzinfo=tz)
        return local.astimezone(UTC)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def _normalize(value: str) -> str:
    return str(TimeOfDay.parse(value))


TimeOfDayStr = Annotated[str, AfterValidator(_normalize)]


def local_date(instant: datetime, tz: tzinfo = UTC) -> date:
    """Calendar date of ``instant`` as seen in ``tz``."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(tz).date()


__all__ = ["TimeOfDay", "TimeOfDayStr", "local_date"]
