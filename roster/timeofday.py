"""
Helpers for ``HH:MM`` time-of-day strings and minute-of-day integers.
"""

import re

TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(TIME_PATTERN)


def is_time(value: str) -> bool:
    return bool(_TIME_RE.match(value))


def to_minutes(value: str) -> int:
    """Minute of day for ``HH:MM``; ``24:00`` is accepted as end of day."""
    if value == "24:00":
        return MINUTES_PER_DAY
    if not is_time(value):
        raise ValueError(f"time must be in HH:MM format, got {value!r}")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def to_hhmm(minutes: int) -> str:
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f"minute of day out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
