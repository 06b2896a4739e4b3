from datetime import datetime, timezone

import pytest

from app.schemas import BusinessHours, DaySchedule
from app.services.hours import is_open

NY = "America/New_York"
SCHEDULE = BusinessHours().schedule  # Mon-Fri 09:00-17:00, weekend disabled


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize("when,expected", [
    (utc(2024, 1, 15, 13, 59), False),  # Mon 08:59 NY
    (utc(2024, 1, 15, 14, 0), True),    # 09:00, start inclusive
    (utc(2024, 1, 15, 18, 30), True),
    (utc(2024, 1, 15, 22, 0), True),    # 17:00, end inclusive
    (utc(2024, 1, 15, 22, 1), False),
])
def test_enabled_day_is_inclusive(when, expected):
    assert is_open(when, NY, SCHEDULE) is expected


def test_disabled_day_is_closed():
    # Saturday 11:00 NY, inside 10:00-14:00 but the day is disabled
    assert is_open(utc(2024, 1, 20, 16, 0), NY, SCHEDULE) is False


def test_missing_day_is_closed():
    schedule = {"monday": DaySchedule(start="00:00", end="23:59")}
    assert is_open(utc(2024, 1, 16, 15, 0), NY, schedule) is False


def test_weekday_resolved_in_local_time():
    # Tue 03:00 UTC is Mon 22:00 in New York
    schedule = {"monday": DaySchedule(start="20:00", end="23:00")}
    assert is_open(utc(2024, 1, 16, 3, 0), NY, schedule) is True
    assert is_open(utc(2024, 1, 16, 3, 0), "UTC", schedule) is False


def test_unknown_timezone_fails_open():
    assert is_open(utc(2024, 1, 20, 3, 0), "Mars/Olympus_Mons", SCHEDULE) is True


@pytest.mark.parametrize("tz", [None, 123, ""])
def test_non_string_timezone_fails_open(tz):
    assert is_open(utc(2024, 1, 20, 3, 0), tz, SCHEDULE) is True


def test_naive_datetime_is_utc():
    assert is_open(datetime(2024, 1, 15, 14, 0), NY, SCHEDULE) is True


def test_plain_dict_schedule():
    schedule = {"tuesday": {"start": "09:00", "end": "17:00", "enabled": True}}
    assert is_open(utc(2024, 1, 16, 15, 0), NY, schedule) is True
