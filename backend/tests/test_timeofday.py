from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import pytest

from thermoplan.timeofday import TimeOfDay, local_date


def test_parse_normalizes_single_digit_hour():
    value = TimeOfDay.parse(" 8:05 ")
    assert value == TimeOfDay(8, 5)
    assert str(value) == "08:05"


@pytest.mark.parametrize("raw", ["", "24:00", "12:60", "noon", "12-30", "1230"])
def test_parse_rejects_invalid_values(raw):
    with pytest.raises(ValueError):
        TimeOfDay.parse(raw)


def test_combine_in_utc():
    instant = TimeOfDay(15, 0).combine(date(2025, 6, 10))
    assert instant == datetime(2025, 6, 10, 15, 0, tzinfo=UTC)


def test_combine_converts_site_time_to_utc():
    paris = ZoneInfo("Europe/Paris")
    summer = TimeOfDay(15, 0).combine(date(2025, 6, 10), paris)
    winter = TimeOfDay(15, 0).combine(date(2025, 1, 10), paris)
    assert summer == datetime(2025, 6, 10, 13, 0, tzinfo=UTC)
    assert winter == datetime(2025, 1, 10, 14, 0, tzinfo=UTC)


def test_ordering_follows_clock():
    assert TimeOfDay(8, 0) < TimeOfDay(15, 0)
    assert TimeOfDay(15, 30) > TimeOfDay(15, 0)


def test_local_date_uses_site_timezone():
    instant = datetime(2025, 6, 10, 23, 30, tzinfo=UTC)
    assert local_date(instant) == date(2025, 6, 10)
    assert local_date(instant, ZoneInfo("Europe/Paris")) == date(2025, 6, 11)
