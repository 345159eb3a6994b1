# backend/services/time_utils.py
"""
Date and time helpers for the calendar. Everything is timezone-aware in the
practice timezone (APP_TIMEZONE). Functions that depend on "now" accept it as
an argument so callers and tests can pin it.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from utils.config import get_settings

WEEKDAY_ALIASES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tues": 1, "tuesday": 1,
    "wed": 2, "weds": 2, "wednesday": 2,
    "thu": 3, "thur": 3, "thurs": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}

NEXT_RE = re.compile(r"^next\s+(\w+)$")
THIS_RE = re.compile(r"^this\s+(\w+)$")
AMPM_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b")
CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})")
BARE_HOUR_RE = re.compile(r"^(\d{1,2})(?:\s*o'?clock)?$")


def get_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def now_local() -> datetime:
    return datetime.now(tz=get_tz())


def now_iso() -> str:
    return now_local().isoformat()


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as practice-local time."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_tz())
    return dt


def _weekday_index(word: str) -> Optional[int]:
    return WEEKDAY_ALIASES.get(word.strip().lower().rstrip("."))


def parse_relative_date(text: str, today: Optional[date] = None) -> Optional[date]:
    if not text or not isinstance(text, str):
        return None
    if today is None:
        today = now_local().date()
    elif isinstance(today, datetime):
        today = today.date()

    s = text.strip().lower()
    if s == "today":
        return today
    if s == "tomorrow":
        return today + timedelta(days=1)
    if s == "next week":
        return today + timedelta(days=7)

    current = today.weekday()

    m = NEXT_RE.match(s)
    if m:
        target = _weekday_index(m.group(1))
        if target is not None:
            diff = (target - current) % 7
            return today + timedelta(days=7 if diff == 0 else diff + 7)

    m = THIS_RE.match(s)
    if m:
        target = _weekday_index(m.group(1))
        if target is not None:
            return today + timedelta(days=(target - current) % 7)

    target = _weekday_index(s)
    if target is not None:
        return today + timedelta(days=(target - current) % 7)

    # explicit dates: "2025-10-24", "10/24", "October 24th"
    try:
        default = datetime(today.year, today.month, today.day)
        return date_parser.parse(text.strip(), default=default).date()
    except (ValueError, OverflowError):
        return None


def parse_time_of_day(text) -> Optional[time]:
    if text is None:
        return None
    s = str(text).strip().lower().replace("a.m.", "am").replace("p.m.", "pm")
    if not s:
        return None
    if s == "noon":
        return time(12, 0)
    if s == "midnight":
        return time(0, 0)

    m = AMPM_RE.search(s)
    if m:
        hours = int(m.group(1))
        minutes = int(m.group(2) or 0)
        if m.group(3) == "pm" and hours != 12:
            hours += 12
        elif m.group(3) == "am" and hours == 12:
            hours = 0
    else:
        m = CLOCK_RE.search(s)
        if m:
            hours = int(m.group(1))
            minutes = int(m.group(2))
        else:
            m = BARE_HOUR_RE.match(s)
            if not m:
                return None
            hours = int(m.group(1))
            minutes = 0
            # spoken "at 3" in a practice day means the afternoon
            if hours < 9:
                hours += 12

    if not (0 <= hours <= 23) or not (0 <= minutes <= 59):
        return None
    return time(hours, minutes)


def resolve_start(date_text, time_text, now: Optional[datetime] = None) -> Optional[datetime]:
    if now is None:
        now = now_local()
    day = parse_relative_date(date_text, today=now.date())
    clock = parse_time_of_day(time_text)
    if day is None or clock is None:
        return None
    return datetime.combine(day, clock, tzinfo=get_tz())


def week_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Sunday 00:00 through the last instant of Saturday."""
    if now is None:
        now = now_local()
    days_since_sunday = (now.weekday() + 1) % 7
    start = (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=7) - timedelta(microseconds=1)
    return start, end


def format_hhmm(dt: datetime) -> str:
    return dt.strftime("%H:%M")
