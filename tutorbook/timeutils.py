"""Time helpers shared by the scheduling services.

All timestamps are stored as naive UTC datetimes.
"""
import math
from datetime import datetime, timezone
from typing import Optional

# Sessions are booked in 15-minute blocks
BOOKING_GRANULARITY_MINUTES = 15


def utcnow() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def ceil_minutes(start: datetime, end: datetime) -> int:
    """Elapsed whole minutes from start to end, rounded up, never negative"""
    return max(0, math.ceil((end - start).total_seconds() / 60.0))


def scheduled_minutes_for(start: datetime, end: datetime) -> int:
    """Length of a booking window in whole minutes"""
    return int(round(minutes_between(start, end)))


def is_valid_booking_length(start: datetime, end: datetime) -> bool:
    """True if the window is a positive multiple of 15 minutes"""
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return False
    return seconds % (BOOKING_GRANULARITY_MINUTES * 60) == 0

