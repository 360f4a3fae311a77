"""
schedule_composer.py
--------------------
Staff-facing schedule views built on SlotAggregator snapshots.

- DailySchedule: one therapist, one date (blocks, bookings, free slots, summary)
- WeeklySchedule: seven consecutive DailySchedules
- ScheduleOverview: every active therapist for one date
- ScheduleStats: a week plus its busiest and most utilized days

Each day reads its own snapshot; weekly and overview views are plain
aggregations of the daily summaries.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List

from configmgr.models import SystemSetting

from ..exceptions import CorruptBookingDuration
from ..models import Therapist
from .slot_aggregator import SlotAggregator

logger = logging.getLogger(__name__)


def _max_booking_minutes() -> int:
    return SystemSetting.get_int("MAX_BOOKING_DURATION_MINUTES", 24 * 60)


def _rate(booked: int, working: int) -> float:
    if working <= 0:
        return 0.0
    return round(min(max(booked / working * 100, 0.0), 100.0), 2)


@dataclass
class DaySummary:
    total_working_minutes: int = 0
    total_booked_minutes: int = 0
    total_time_off_minutes: int = 0
    available_minutes: int = 0
    utilization_rate: float = 0.0
    booking_count: int = 0
    has_time_off: bool = False
    flagged_bookings: List[int] = field(default_factory=list)

    def as_dict(self):
        return {
            "total_working_minutes": self.total_working_minutes,
            "total_booked_minutes": self.total_booked_minutes,
            "total_time_off_minutes": self.total_time_off_minutes,
            "available_minutes": self.available_minutes,
            "total_working_hours": self.total_working_minutes // 60,
            "total_booked_hours": self.total_booked_minutes // 60,
            "total_available_hours": self.available_minutes // 60,
            "utilization_rate": self.utilization_rate,
            "booking_count": self.booking_count,
            "has_time_off": self.has_time_off,
            "flagged_bookings": list(self.flagged_bookings),
        }


@dataclass
class DailySchedule:
    therapist: Therapist
    on_date: date
    working_hours: list
    bookings: list
    time_off: list
    available_slots: list
    summary: DaySummary

    def as_dict(self):
        return {
            "therapist": {"id": self.therapist.pk, "name": self.therapist.name},
            "date": self.on_date.isoformat(),
            "working_hours": [b.as_dict() for b in self.working_hours],
            "bookings": self.bookings,
            "time_off": [b.as_dict() for b in self.time_off],
            "available_slots": [s.as_dict() for s in self.available_slots],
            "summary": self.summary.as_dict(),
        }


@dataclass
class WeeklySchedule:
    therapist: Therapist
    start_date: date
    days: List[DailySchedule]
    total_bookings: int
    total_working_minutes: int
    total_booked_minutes: int
    average_utilization: float
    working_days: int

    @property
    def end_date(self) -> date:
        return self.start_date + timedelta(days=6)

    def as_dict(self):
        return {
            "therapist": {"id": self.therapist.pk, "name": self.therapist.name},
            "week_start": self.start_date.isoformat(),
            "week_end": self.end_date.isoformat(),
            "days": [d.as_dict() for d in self.days],
            "summary": {
                "total_bookings": self.total_bookings,
                "total_working_minutes": self.total_working_minutes,
                "total_booked_minutes": self.total_booked_minutes,
                "average_utilization": self.average_utilization,
                "working_days": self.working_days,
            },
        }


@dataclass
class ScheduleOverview:
    on_date: date
    schedules: List[DailySchedule]
    total_therapists: int
    active_therapists: int
    total_bookings: int
    average_utilization: float

    def as_dict(self):
        return {
            "date": self.on_date.isoformat(),
            "therapists": [s.as_dict() for s in self.schedules],
            "summary": {
                "total_therapists": self.total_therapists,
                "active_therapists": self.active_therapists,
                "total_bookings": self.total_bookings,
                "average_utilization": self.average_utilization,
            },
        }


@dataclass
class ScheduleStats:
    weekly: WeeklySchedule
    busiest_day: DailySchedule
    peak_utilization_day: DailySchedule
    average_bookings_per_day: float

    def as_dict(self):
        return {
            "therapist": {"id": self.weekly.therapist.pk, "name": self.weekly.therapist.name},
            "date_range": {
                "start": self.weekly.start_date.isoformat(),
                "end": self.weekly.end_date.isoformat(),
            },
            "summary": self.weekly.as_dict()["summary"],
            "daily_breakdown": [
                {"date": d.on_date.isoformat(), "summary": d.summary.as_dict()} for d in self.weekly.days
            ],
            "trends": {
                "busiest_day": {
                    "date": self.busiest_day.on_date.isoformat(),
                    "booking_count": self.busiest_day.summary.booking_count,
                },
                "peak_utilization_day": {
                    "date": self.peak_utilization_day.on_date.isoformat(),
                    "utilization_rate": self.peak_utilization_day.summary.utilization_rate,
                },
                "average_bookings_per_day": self.average_bookings_per_day,
            },
        }


def format_booking(interval) -> dict:
    b = interval.booking
    option = b.service_option
    return {
        "id": b.pk,
        "start_time": b.booking_start_time.isoformat(),
        "end_time": b.booking_end_time.isoformat(),
        "duration_minutes": interval.duration_minutes,
        "status": b.status,
        "payment_status": b.payment_status,
        "price_at_booking": str(b.price_at_booking),
        "client": {
            "id": b.client_id,
            "name": b.client.full_name,
            "email": b.client.email,
        },
        "service": {
            "id": option.service_id,
            "name": option.service.name,
            "option": option.option_name,
            "duration_minutes": option.duration_minutes,
        },
        "notes": b.client_notes,
    }


class ScheduleComposer:
    def __init__(self, aggregator=None):
        self.aggregator = aggregator or SlotAggregator()

    def summarize(self, snapshot) -> DaySummary:
        limit = _max_booking_minutes()
        working = sum(b.duration_minutes for b in snapshot.working_blocks)
        time_off = sum(b.duration_minutes for b in snapshot.time_off_blocks)

        booked = 0
        flagged = []
        for interval in snapshot.bookings:
            if interval.duration_minutes > limit:
                err = CorruptBookingDuration(
                    booking_id=interval.booking.pk, duration_minutes=interval.duration_minutes
                )
                logger.warning("%s (booking #%s)", err, interval.booking.pk)
                flagged.append(interval.booking.pk)
                continue
            booked += interval.duration_minutes

        return DaySummary(
            total_working_minutes=working,
            total_booked_minutes=booked,
            total_time_off_minutes=time_off,
            available_minutes=max(working - booked - time_off, 0),
            utilization_rate=_rate(booked, working),
            booking_count=len(snapshot.bookings),
            has_time_off=bool(snapshot.time_off_blocks),
            flagged_bookings=flagged,
        )

    def get_daily_schedule(self, therapist, on_date: date) -> DailySchedule:
        snapshot = self.aggregator.load_snapshot(therapist, on_date)
        return DailySchedule(
            therapist=therapist,
            on_date=on_date,
            working_hours=list(snapshot.working_blocks),
            bookings=[format_booking(i) for i in snapshot.bookings],
            time_off=list(snapshot.time_off_blocks),
            available_slots=self.aggregator.free_intervals(snapshot),
            summary=self.summarize(snapshot),
        )

    def get_weekly_schedule(self, therapist, start_date: date) -> WeeklySchedule:
        days = [self.get_daily_schedule(therapist, start_date + timedelta(days=i)) for i in range(7)]
        total_rate = sum(d.summary.utilization_rate for d in days)
        return WeeklySchedule(
            therapist=therapist,
            start_date=start_date,
            days=days,
            total_bookings=sum(d.summary.booking_count for d in days),
            total_working_minutes=sum(d.summary.total_working_minutes for d in days),
            total_booked_minutes=sum(d.summary.total_booked_minutes for d in days),
            average_utilization=round(total_rate / 7, 2),
            working_days=sum(1 for d in days if d.summary.total_working_minutes > 0),
        )

    def get_schedule_overview(self, on_date: date) -> ScheduleOverview:
        therapists = Therapist.objects.filter(is_active=True).order_by("name", "id")
        schedules = [self.get_daily_schedule(t, on_date) for t in therapists]
        count = len(schedules)
        average = round(sum(s.summary.utilization_rate for s in schedules) / count, 2) if count else 0.0
        return ScheduleOverview(
            on_date=on_date,
            schedules=schedules,
            total_therapists=count,
            active_therapists=sum(1 for s in schedules if s.summary.total_working_minutes > 0),
            total_bookings=sum(s.summary.booking_count for s in schedules),
            average_utilization=average,
        )

    def get_schedule_stats(self, therapist, start_date: date) -> ScheduleStats:
        """Seven days from start_date; ties for busiest or peak day go to the earlier date."""
        weekly = self.get_weekly_schedule(therapist, start_date)
        return ScheduleStats(
            weekly=weekly,
            busiest_day=max(weekly.days, key=lambda d: d.summary.booking_count),
            peak_utilization_day=max(weekly.days, key=lambda d: d.summary.utilization_rate),
            average_bookings_per_day=round(weekly.total_bookings / 7, 2),
        )
