from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

DAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

# 0=Sunday .. 6=Saturday
DAY_NAMES = {
    "sunday": 0,
    "sun": 0,
    "monday": 1,
    "mon": 1,
    "tuesday": 2,
    "tue": 2,
    "tues": 2,
    "wednesday": 3,
    "wed": 3,
    "thursday": 4,
    "thu": 4,
    "thurs": 4,
    "friday": 5,
    "fri": 5,
    "saturday": 6,
    "sat": 6,
}

_AMPM_RE = re.compile(r"\b([0-9]{1,2})(?::([0-9]{2}))?\s*(am|pm)\b")
_24H_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_ISO_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
_MD_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")


@dataclass(frozen=True)
class ParsedTime:
    time24: str | None = None
    label: str | None = None
    time_of_day: str | None = None  # "morning" | "afternoon" | "evening" | "anytime"


@dataclass(frozen=True)
class ParsedFrequency:
    days: tuple[int, ...]
    label: str


def parse_time(text: str) -> ParsedTime | None:
    lowered = text.lower()
    if "anytime" in lowered:
        return ParsedTime(label="Anytime", time_of_day="anytime")
    if "morning" in lowered:
        return ParsedTime(label="Morning", time_of_day="morning")
    if "afternoon" in lowered:
        return ParsedTime(label="Afternoon", time_of_day="afternoon")
    if "evening" in lowered or "night" in lowered:
        return ParsedTime(label="Evening", time_of_day="evening")

    ampm = _AMPM_RE.search(lowered)
    if ampm:
        hour = int(ampm.group(1))
        minute = int(ampm.group(2) or 0)
        if hour > 12 or minute > 59:
            return None
        if ampm.group(3) == "pm" and hour < 12:
            hour += 12
        if ampm.group(3) == "am" and hour == 12:
            hour = 0
        time24 = f"{hour:02d}:{minute:02d}"
        return ParsedTime(time24=time24, label=format_time_label(time24), time_of_day=to_time_of_day(time24))

    clock = _24H_RE.search(lowered)
    if clock:
        time24 = f"{int(clock.group(1)):02d}:{clock.group(2)}"
        return ParsedTime(time24=time24, label=format_time_label(time24), time_of_day=to_time_of_day(time24))

    return None


def format_time_label(time24: str) -> str:
    hour_str, minute_str = time24.split(":")
    hour = int(hour_str)
    minute = int(minute_str)
    period = "PM" if hour >= 12 else "AM"
    display_hour = 12 if hour % 12 == 0 else hour % 12
    return f"{display_hour}:{minute:02d} {period}"


def to_time_of_day(time24: str | None) -> str:
    if not time24:
        return "anytime"
    hour = int(time24.split(":")[0])
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def parse_frequency(text: str) -> ParsedFrequency | None:
    lowered = text.lower()
    if "daily" in lowered or "every day" in lowered:
        return ParsedFrequency(days=(0, 1, 2, 3, 4, 5, 6), label="Daily")
    if "weekdays" in lowered:
        return ParsedFrequency(days=(1, 2, 3, 4, 5), label="Weekdays")
    if "weekends" in lowered:
        return ParsedFrequency(days=(0, 6), label="Weekends")

    # Whole tokens only, so "mom" or "monthly" do not read as Monday.
    tokens = re.findall(r"[a-z]+", lowered)
    days = sorted({DAY_NAMES[token] for token in tokens if token in DAY_NAMES})
    if days:
        return ParsedFrequency(days=tuple(days), label=", ".join(day_label(day) for day in days))

    if "weekly" in lowered:
        return ParsedFrequency(days=(1,), label="Weekly (Mon)")

    return None


def day_label(day: int) -> str:
    if 0 <= day < len(DAY_LABELS):
        return DAY_LABELS[day]
    return "Day"


def today_in(timezone: ZoneInfo) -> date:
    return datetime.now(timezone).date()


def parse_date(text: str, reference_date: date | None = None) -> str | None:
    """Parse a calendar date from text. Returns an ISO date string or None."""
    if reference_date is None:
        reference_date = date.today()

    lowered = text.lower()
    if "today" in lowered:
        return reference_date.isoformat()
    if "tomorrow" in lowered:
        return (reference_date + timedelta(days=1)).isoformat()
    if "yesterday" in lowered:
        return (reference_date - timedelta(days=1)).isoformat()

    iso = _ISO_RE.search(lowered)
    if iso:
        return iso.group(0)

    month_day = _MD_RE.search(lowered)
    if month_day:
        year = int(month_day.group(3)) if month_day.group(3) else reference_date.year
        if year < 100:
            year += 2000
        month = int(month_day.group(1))
        day = int(month_day.group(2))
        return f"{year}-{month:02d}-{day:02d}"

    return None


def format_date_label(date_str: str) -> str:
    try:
        parsed = date.fromisoformat(date_str)
    except ValueError:
        return date_str
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"
