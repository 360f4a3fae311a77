"""
time_windows.py
---------------
Pure helpers for wall-clock times, minute offsets and interval arithmetic.

Conventions:
- Wall times are datetime.time values in the clinic's time zone (TIME_ZONE).
- Inside a day, intervals are (start_minute, end_minute) pairs measured from
  local midnight, half-open [start, end). End values may exceed 1440 for
  blocks that run past midnight.
- day_of_week() uses 0=Sunday .. 6=Saturday, the convention stored on
  AvailabilityRule and Schedule rows.
"""

import logging
from datetime import datetime, time, timedelta

from django.utils import timezone

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Minute offset -> wall time, wrapping past midnight."""
    minutes = minutes % MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def add_minutes(value: time, minutes: int) -> time:
    return from_minutes(to_minutes(value) + minutes)


def duration_minutes(start: time, end: time) -> int:
    """
    Minutes from start to end. When end is earlier than start the block is
    assumed to run past midnight and 24h is added; that wrap is logged
    because it can also be a data-entry mistake.
    """
    diff = to_minutes(end) - to_minutes(start)
    if diff < 0:
        logger.warning(
            "Overnight wrap applied for %s-%s (%d minutes)",
            start.strftime("%H:%M"), end.strftime("%H:%M"), diff + MINUTES_PER_DAY,
        )
        diff += MINUTES_PER_DAY
    return diff


def block_span(start: time, end: time):
    """(start_minute, end_minute) for a wall-clock block, end > start if wrapped."""
    begin = to_minutes(start)
    return begin, begin + duration_minutes(start, end)


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return start_a < end_b and start_b < end_a


def merge_intervals(intervals):
    """Sort and merge overlapping or adjacent (start, end) pairs."""
    merged = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def clip_interval(interval, lower, upper):
    """Clip to [lower, upper); None when nothing is left."""
    start, end = max(interval[0], lower), min(interval[1], upper)
    if start >= end:
        return None
    return start, end


def subtract_intervals(span, occupied):
    """
    Free gaps of `span` after removing `occupied` intervals.
    Occupied intervals are clipped to the span and merged first so touching
    bookings never produce zero-length slivers.
    """
    lower, upper = span
    clipped = [c for c in (clip_interval(i, lower, upper) for i in occupied) if c]
    gaps = []
    cursor = lower
    for start, end in merge_intervals(clipped):
        if cursor < start:
            gaps.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < upper:
        gaps.append((cursor, upper))
    return gaps


def day_of_week(day) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def _make_aware(dt_naive: datetime):
    """Attach the current (clinic) time zone to a naive datetime."""
    if timezone.is_aware(dt_naive):
        return dt_naive
    return timezone.make_aware(dt_naive, timezone.get_current_timezone())


def combine(day, wall_time: time) -> datetime:
    """Aware instant for a clinic-local date + wall time."""
    return _make_aware(datetime.combine(day, wall_time))


def date_to_range(day):
    """Aware [start, end) window covering one clinic-local day."""
    day_start = combine(day, time(0, 0))
    return day_start, combine(day + timedelta(days=1), time(0, 0))


def local_slot_parts(instant: datetime):
    """Split an instant into the clinic-local (date, wall time) it falls on."""
    local = timezone.localtime(_make_aware(instant))
    return local.date(), local.time().replace(second=0, microsecond=0)


def minutes_into_day(instant: datetime, day) -> int:
    """Minutes between clinic-local midnight of `day` and `instant`."""
    delta = _make_aware(instant) - combine(day, time(0, 0))
    return int(delta.total_seconds() // 60)
