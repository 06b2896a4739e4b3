import logging
from datetime import datetime, timezone as dt_timezone
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.schemas import WEEKDAYS

log = logging.getLogger("hours")


def _field(day: Any, name: str, default=None):
    if isinstance(day, Mapping):
        return day.get(name, default)
    return getattr(day, name, default)


def local_clock(now_utc: datetime, tz_name: str) -> tuple:
    """(weekday name, "HH:MM") at now_utc in tz_name."""
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=dt_timezone.utc)
    local = now_utc.astimezone(ZoneInfo(tz_name))
    return WEEKDAYS[local.weekday()], local.strftime("%H:%M")


def is_open(now_utc: datetime, timezone: str, schedule: Optional[Mapping[str, Any]]) -> bool:
    """
    Inside business hours?
      - missing or disabled day -> closed
      - start <= HH:MM <= end, both inclusive
      - unresolvable or non-string timezone -> open
    """
    try:
        weekday, hhmm = local_clock(now_utc, timezone)
    except (ZoneInfoNotFoundError, ValueError, KeyError, TypeError, OSError) as e:
        log.warning("timezone resolution failed tz=%r err=%s; treating as open", timezone, e)
        return True

    day = (schedule or {}).get(weekday)
    if day is None or not _field(day, "enabled", False):
        return False
    start = _field(day, "start") or "00:00"
    end = _field(day, "end") or "23:59"
    return start <= hhmm <= end
