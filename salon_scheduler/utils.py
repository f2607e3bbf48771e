"""Shared utilities used across the scheduling core."""

import asyncio
import re
from datetime import date, datetime, timedelta
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("040 123 4567")
        '0401234567'
        >>> normalize_phone("+358 (40) 123-4567")
        '+358401234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def parse_wall_clock(value: str) -> int:
    """Parse an ``HH:MM`` wall-clock value into minutes since midnight.

    ``24:00`` is accepted as end-of-day so a window may close at midnight.

    Examples:
        >>> parse_wall_clock("09:30")
        570
    """
    match = re.fullmatch(r"(\d{1,2}):(\d{2})", value.strip())
    if not match:
        raise ValueError(f"Invalid wall-clock time: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if minute > 59 or hour > 24 or (hour == 24 and minute != 0):
        raise ValueError(f"Invalid wall-clock time: {value!r}")
    return hour * 60 + minute


def format_wall_clock(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_of_week(day: date) -> int:
    """Weekday number with 0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` datetimes covering a calendar day."""
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def minutes_since_midnight(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


async def bounded(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """Await a store call, enforcing the caller's deadline when one is set."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout)
