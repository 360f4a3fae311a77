"""
slot_aggregator.py
------------------
Turns one therapist-day into occupied and free intervals.

Steps (per therapist, per date):
1) WorkingHours blocks, with specific-date rows replacing weekday rows.
   A specific-date block with start == end closes the day.
2) TimeOff blocks, resolved the same way.
3) The therapist's bookings starting that day, excluding cancelled ones.
4) For every working block: subtract the merged union of bookings and
   time off, keep the gaps.
5) Optionally, walk each working block in 15 minute steps and keep the
   starts where a requested duration fits inside one gap.

All inputs are read once into a DaySnapshot; nothing is re-queried while
computing, so a concurrent writer cannot produce a half-old/half-new view.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Tuple

from staff.models import Schedule

from ..models import Booking
from .rule_resolution import candidate_filter, resolve_for_date
from .time_windows import (
    MINUTES_PER_DAY,
    block_span,
    date_to_range,
    from_minutes,
    merge_intervals,
    minutes_into_day,
    subtract_intervals,
)

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 15


@dataclass(frozen=True)
class Block:
    id: int
    type: str
    start_time: time
    end_time: time
    start_minute: int
    end_minute: int
    notes: str = ""

    @property
    def span(self):
        return self.start_minute, self.end_minute

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def as_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class BookedInterval:
    booking: Booking
    start_minute: int
    end_minute: int

    @property
    def span(self):
        return self.start_minute, self.end_minute

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute


@dataclass(frozen=True)
class FreeInterval:
    start_minute: int
    end_minute: int

    @property
    def start_time(self) -> time:
        return from_minutes(self.start_minute)

    @property
    def end_time(self) -> time:
        return from_minutes(self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def as_dict(self):
        return {
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
        }


@dataclass(frozen=True)
class DaySnapshot:
    therapist_id: int
    on_date: date
    working_blocks: Tuple[Block, ...]
    time_off_blocks: Tuple[Block, ...]
    bookings: Tuple[BookedInterval, ...]
    has_schedule: bool

    @property
    def is_closed(self) -> bool:
        return not self.working_blocks


def _schedule_group(row):
    return row.therapist_id, row.type


def _to_block(row) -> Block:
    start, end = block_span(row.start_time, row.end_time)
    return Block(
        id=row.id,
        type=row.type,
        start_time=row.start_time,
        end_time=row.end_time,
        start_minute=start,
        end_minute=end,
        notes=row.notes,
    )


class SlotAggregator:
    def load_snapshot(self, therapist, on_date: date) -> DaySnapshot:
        therapist_id = getattr(therapist, "pk", therapist)

        rows = list(
            Schedule.objects
            .filter(therapist_id=therapist_id, is_active=True)
            .filter(candidate_filter(on_date))
            .order_by("start_time", "id")
        )
        resolved = resolve_for_date(rows, on_date, _schedule_group)
        working = tuple(
            b for b in (_to_block(r) for r in resolved if r.type == Schedule.WORKING_HOURS)
            if b.duration_minutes > 0
        )
        time_off = tuple(_to_block(r) for r in resolved if r.type == Schedule.TIME_OFF)

        day_start, day_end = date_to_range(on_date)
        booked = []
        qs = (
            Booking.objects
            .filter(
                therapist_id=therapist_id,
                booking_start_time__gte=day_start,
                booking_start_time__lt=day_end,
            )
            .exclude(status__in=Booking.CANCELLED_STATUSES)
            .select_related("client", "service_option__service")
            .order_by("booking_start_time")
        )
        for b in qs:
            start = minutes_into_day(b.booking_start_time, on_date)
            end = minutes_into_day(b.booking_end_time, on_date)
            if end < start:
                logger.warning("Booking #%s ends before it starts; ignored for %s", b.pk, on_date)
                continue
            booked.append(BookedInterval(booking=b, start_minute=start, end_minute=end))

        has_schedule = bool(rows) or Schedule.objects.filter(therapist_id=therapist_id).exists()

        return DaySnapshot(
            therapist_id=therapist_id,
            on_date=on_date,
            working_blocks=working,
            time_off_blocks=time_off,
            bookings=tuple(booked),
            has_schedule=has_schedule,
        )

    def free_intervals(self, snapshot: DaySnapshot):
        """Working hours minus bookings and time off, ordered by start."""
        occupied = [b.span for b in snapshot.bookings] + [t.span for t in snapshot.time_off_blocks]
        free = []
        for block in snapshot.working_blocks:
            free.extend(FreeInterval(s, e) for s, e in subtract_intervals(block.span, occupied))
        return sorted(free, key=lambda f: f.start_minute)

    def bookable_windows(self, snapshot: DaySnapshot):
        """Working hours minus time off; bookings are not subtracted."""
        windows = []
        occupied = [t.span for t in snapshot.time_off_blocks]
        for block in snapshot.working_blocks:
            windows.extend(subtract_intervals(block.span, occupied))
        return merge_intervals(windows)

    def get_free_slots(self, therapist, on_date: date):
        return self.free_intervals(self.load_snapshot(therapist, on_date))

    def fits_working_hours(self, snapshot: DaySnapshot, start_minute: int, duration: int) -> bool:
        """
        True when [start, start + duration) lies inside one bookable window.
        Therapists without any schedule rows are not restricted.
        """
        if not snapshot.has_schedule:
            return True
        end_minute = start_minute + duration
        for lower, upper in self.bookable_windows(snapshot):
            if lower <= start_minute and end_minute <= upper:
                return True
        return False

    def start_times(self, snapshot: DaySnapshot, duration: int, step: int = SLOT_STEP_MINUTES):
        """
        Start times, walked in `step` minute increments from the start of each
        working block, at which `duration` minutes fit inside free time.
        """
        if duration <= 0 or step <= 0:
            raise ValueError("duration and step must be positive")
        free = [(f.start_minute, f.end_minute) for f in self.free_intervals(snapshot)]
        starts = set()
        for block in snapshot.working_blocks:
            minute = block.start_minute
            while minute + duration <= block.end_minute and minute < MINUTES_PER_DAY:
                end_minute = minute + duration
                if any(lower <= minute and end_minute <= upper for lower, upper in free):
                    starts.add(minute)
                minute += step
        return [from_minutes(m) for m in sorted(starts)]

    def get_start_times(self, therapist, on_date: date, duration: int):
        return self.start_times(self.load_snapshot(therapist, on_date), duration)
