"""Time validation utilities"""
import re
from datetime import date
from typing import Union

from errors import ValidationError

TIME_PATTERN = re.compile(r'^([0-1][0-9]|2[0-3]):[0-5][0-9]$')
MINUTES_PER_DAY = 24 * 60

TimeValue = Union[str, int]


def validate_time_format(time_str: str) -> bool:
    """Validate time string is in zero-padded HH:MM format"""
    if not isinstance(time_str, str) or not TIME_PATTERN.match(time_str):
        raise ValidationError(
            f"Invalid time format: {time_str}. Use HH:MM format (e.g., 09:30, 14:00)"
        )
    return True


def to_minutes(time_str: str) -> int:
    """Convert "HH:MM" to minutes since midnight"""
    validate_time_format(time_str)
    hours, minutes = time_str.split(":")
    return int(hours) * 60 + int(minutes)


def to_time_string(minutes: int) -> str:
    """Convert minutes since midnight to zero-padded "HH:MM" """
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValidationError(f"Minute offset out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _as_minutes(value: TimeValue) -> int:
    return value if isinstance(value, int) else to_minutes(value)


def overlaps(start_a: TimeValue, end_a: TimeValue, start_b: TimeValue, end_b: TimeValue) -> bool:
    """Half-open interval overlap; touching boundaries do not overlap.

    Accepts "HH:MM" strings or minute offsets, so slot generation and
    conflict detection share the same comparison.
    """
    return _as_minutes(start_a) < _as_minutes(end_b) and _as_minutes(end_a) > _as_minutes(start_b)


def validate_time_range(start_time_str: str, end_time_str: str) -> bool:
    """Validate that end time is after start time"""
    if to_minutes(end_time_str) <= to_minutes(start_time_str):
        raise ValidationError(
            f"End time ({end_time_str}) must be after start time ({start_time_str})"
        )
    return True


def get_duration_minutes(start_time_str: str, end_time_str: str) -> int:
    """Get duration in minutes between two time strings"""
    return to_minutes(end_time_str) - to_minutes(start_time_str)


def weekday_sunday_first(day: date) -> int:
    """Weekday with 0=Sunday .. 6=Saturday"""
    return day.isoweekday() % 7
