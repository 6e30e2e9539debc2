"""
Clock and time-of-day helpers for the booking engine.

Scheduled times are stored as naive wall-clock datetimes in the clinic's
timezone. Time-of-day values travel as normalized 24-hour "HH:MM" strings
so that slot identity never depends on a timezone conversion.
"""

from datetime import date, datetime, time, timedelta
import re
from typing import List

import pytz

from .config import settings

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")


def get_clinic_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(settings.clinic_timezone)


def clinic_now() -> datetime:
    """Current wall-clock time in the clinic timezone, without tzinfo."""
    return datetime.now(get_clinic_timezone()).replace(tzinfo=None)


def normalize_time_string(value: str) -> str:
    """
    Normalize a time-of-day string to "HH:MM".

    Accepts "9:00", "09:00", "09:00:00", "09:00 AM" and the start of a
    range such as "09:00-09:45".

    Raises:
        ValueError: If the value is not a recognizable time of day
    """
    if value is None:
        raise ValueError("time value is required")
    candidate = str(value).split("-")[0].strip()

    match = _TIME_12H.match(candidate)
    if match:
        hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hours <= 12:
            raise ValueError(f"Invalid 12-hour time: {value}")
        if meridiem == "PM" and hours != 12:
            hours += 12
        elif meridiem == "AM" and hours == 12:
            hours = 0
    else:
        match = _TIME_24H.match(candidate)
        if not match:
            raise ValueError(f"Invalid time format: {value}. Use HH:MM")
        hours, minutes = int(match.group(1)), int(match.group(2))

    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time of day: {value}")
    return f"{hours:02d}:{minutes:02d}"


def time_string_to_minutes(value: str) -> int:
    hours, minutes = normalize_time_string(value).split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time_string(total_minutes: int) -> str:
    if total_minutes < 0 or total_minutes >= 24 * 60:
        raise ValueError(f"Minutes out of range for a single day: {total_minutes}")
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def time_to_string(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def combine(day: date, time_string: str) -> datetime:
    """Build the wall-clock datetime for a date and an "HH:MM" string."""
    minutes = time_string_to_minutes(time_string)
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def alternate_time_encodings(time_string: str) -> List[str]:
    """
    Encodings a stored start time may have been written with.

    Slot rows created by older clients are not always normalized, so slot
    freeing retries with these variants when the canonical form matches
    nothing. The canonical form is always first.
    """
    normalized = normalize_time_string(time_string)
    hours, minutes = (int(part) for part in normalized.split(":"))
    meridiem = "AM" if hours < 12 else "PM"
    twelve_hour = hours % 12 or 12

    variants = [
        normalized,
        f"{hours}:{minutes:02d}",
        f"{normalized}:00",
        f"{twelve_hour:02d}:{minutes:02d} {meridiem}",
        f"{twelve_hour}:{minutes:02d} {meridiem}",
    ]
    seen: set[str] = set()
    ordered: List[str] = []
    for variant in variants:
        if variant not in seen:
            seen.add(variant)
            ordered.append(variant)
    return ordered
