"""
availability_engine.py
----------------------
Capacity checks and slot listing for one service option on one date.

A slot exists only if an AvailabilityRule resolves for it (see
rule_resolution.py). "Not offered" and "full" are different answers: the
first means the slot never appears in listings.

Capacity accounting:
- Therapist given: limit = that therapist's matching rule(s); usage = that
  therapist's active bookings for the option at that exact start instant.
  Remaining is also capped by what is left in the pool, since unassigned
  bookings hold pool places without naming a therapist.
- No therapist (pooled): limit = sum of booking_limit over every matching
  rule at that time, whichever therapist it names (or none); usage = all
  active bookings for the option at that instant, any therapist.

The listing path and the booking write path both go through
`capacity_for()`, so pooled counting cannot drift between them.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from ..models import Booking
from .rule_resolution import RuleSnapshot, load_rule_snapshot
from .slot_aggregator import SlotAggregator
from .time_windows import combine, date_to_range, to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotCapacity:
    offered: bool
    booking_limit: int = 0
    booked: int = 0
    # places left in the whole slot; set for therapist-specific checks
    pool_remaining: Optional[int] = None

    @property
    def remaining(self) -> int:
        left = self.booking_limit - self.booked
        if self.pool_remaining is not None:
            left = min(left, self.pool_remaining)
        return max(left, 0)

    @property
    def is_available(self) -> bool:
        return self.offered and self.remaining > 0


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time
    remaining: int
    booking_limit: int

    def as_dict(self):
        return {
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "remaining": self.remaining,
            "booking_limit": self.booking_limit,
        }


def capacity_for(rules: RuleSnapshot, usage, start_time: time, therapist_id=None) -> SlotCapacity:
    """
    Pure capacity computation.
    `usage` is an iterable of (start_instant, therapist_id) for active bookings
    of the rule snapshot's option on its date.
    """
    matching = rules.matching(start_time, therapist_id)
    if not matching:
        return SlotCapacity(offered=False)

    start_instant = combine(rules.on_date, start_time)
    at_start = [t for instant, t in usage if instant == start_instant]
    limit = sum(r.booking_limit for r in matching)
    if therapist_id is None:
        return SlotCapacity(offered=True, booking_limit=limit, booked=len(at_start))

    # Unassigned bookings hold places in the pool, so a therapist can never
    # take more than the pool has left.
    pool_limit = sum(r.booking_limit for r in rules.matching(start_time))
    return SlotCapacity(
        offered=True,
        booking_limit=limit,
        booked=sum(1 for t in at_start if t == therapist_id),
        pool_remaining=pool_limit - len(at_start),
    )


class AvailabilityEngine:
    def __init__(self, aggregator=None):
        self.aggregator = aggregator or SlotAggregator()

    def is_option_bookable(self, service_option) -> bool:
        return bool(service_option.is_active and service_option.service.is_active)

    def load_usage(self, service_option, on_date: date, exclude_booking_id=None):
        """(start_instant, therapist_id) for every active booking of the option that day."""
        day_start, day_end = date_to_range(on_date)
        qs = (
            Booking.objects
            .filter(
                service_option=service_option,
                booking_start_time__gte=day_start,
                booking_start_time__lt=day_end,
            )
            .exclude(status__in=Booking.CANCELLED_STATUSES)
        )
        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        return tuple(qs.values_list("booking_start_time", "therapist_id"))

    def check_capacity(self, service_option, therapist, on_date: date, start_time: time,
                       exclude_booking_id=None) -> SlotCapacity:
        """
        Fresh capacity read for one slot. BookingManager calls this while it
        holds the slot lock.
        """
        if not self.is_option_bookable(service_option):
            return SlotCapacity(offered=False)
        therapist_id = getattr(therapist, "pk", therapist)
        rules = load_rule_snapshot(service_option, on_date)
        usage = self.load_usage(service_option, on_date, exclude_booking_id=exclude_booking_id)
        return capacity_for(rules, usage, start_time, therapist_id)

    def fits_therapist_hours(self, therapist, on_date: date, start_time: time, duration: int) -> bool:
        if therapist is None:
            return True
        snapshot = self.aggregator.load_snapshot(therapist, on_date)
        return self.aggregator.fits_working_hours(snapshot, to_minutes(start_time), duration)

    def get_available_slots(self, service_option, therapist, on_date: date):
        """
        Bookable slots for the option on `on_date`, sorted by start time.
        Full slots are left out. With a therapist who has schedule rows,
        slots outside their working hours (or inside time off) are left out.
        """
        if not self.is_option_bookable(service_option):
            return []

        therapist_id = getattr(therapist, "pk", therapist)
        rules = load_rule_snapshot(service_option, on_date)
        if not rules.rules:
            return []
        usage = self.load_usage(service_option, on_date)

        day_snapshot = None
        if therapist_id is not None:
            day_snapshot = self.aggregator.load_snapshot(therapist_id, on_date)

        duration = service_option.duration_minutes
        slots = []
        for start in rules.start_times(therapist_id):
            capacity = capacity_for(rules, usage, start, therapist_id)
            if not capacity.is_available:
                continue
            if day_snapshot is not None and not self.aggregator.fits_working_hours(
                day_snapshot, to_minutes(start), duration
            ):
                continue
            end = rules.matching(start, therapist_id)[0].end_time
            slots.append(Slot(
                start_time=start,
                end_time=end,
                remaining=capacity.remaining,
                booking_limit=capacity.booking_limit,
            ))

        logger.debug(
            "Listed %d slot(s) for option %s therapist %s on %s",
            len(slots), service_option.pk, therapist_id or "any", on_date,
        )
        return slots
