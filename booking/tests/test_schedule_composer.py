from datetime import time, timedelta

from django.http import Http404
from django.test import TestCase

from booking.models import Booking, Therapist
from booking.services import (
    get_daily_schedule,
    get_schedule_overview,
    get_schedule_stats,
    get_weekly_schedule,
)
from booking.services.schedule_composer import ScheduleComposer
from staff.models import Schedule

from .factories import MONDAY, add_booking, add_hours, make_client, make_option, make_therapist


class DailyScheduleTests(TestCase):
    def setUp(self):
        self.therapist = make_therapist()
        self.option = make_option(duration=60, price="90.00")
        self.client_obj = make_client()
        add_hours(self.therapist, time(9, 0), time(17, 0))

    def test_summary(self):
        add_hours(self.therapist, time(15, 0), time(16, 0), type=Schedule.TIME_OFF)
        add_booking(self.option, self.client_obj, (MONDAY, time(12, 0)), therapist=self.therapist)
        add_booking(self.option, self.client_obj, (MONDAY, time(13, 0)), therapist=self.therapist, minutes=120)

        day = get_daily_schedule(self.therapist.pk, MONDAY)
        s = day.summary
        self.assertEqual(s.total_working_minutes, 480)
        self.assertEqual(s.total_booked_minutes, 180)
        self.assertEqual(s.total_time_off_minutes, 60)
        self.assertEqual(s.available_minutes, 240)
        self.assertEqual(s.utilization_rate, 37.5)
        self.assertEqual(s.booking_count, 2)
        self.assertTrue(s.has_time_off)
        self.assertEqual(s.flagged_bookings, [])

        payload = day.as_dict()
        self.assertEqual(payload["bookings"][0]["client"]["email"], "client@example.com")
        self.assertEqual(payload["bookings"][0]["price_at_booking"], "90.00")
        self.assertEqual(
            [(a["start_time"], a["end_time"]) for a in payload["available_slots"]],
            [("09:00", "12:00"), ("16:00", "17:00")],
        )

    def test_thirty_hour_booking_is_flagged_and_excluded(self):
        add_booking(self.option, self.client_obj, (MONDAY, time(10, 0)), therapist=self.therapist)
        corrupt = add_booking(
            self.option, self.client_obj, (MONDAY, time(11, 0)), therapist=self.therapist, minutes=30 * 60
        )

        with self.assertLogs("booking.services.schedule_composer", level="WARNING"):
            day = ScheduleComposer().get_daily_schedule(self.therapist, MONDAY)

        self.assertEqual(day.summary.total_booked_minutes, 60)
        self.assertEqual(day.summary.flagged_bookings, [corrupt.pk])
        self.assertLessEqual(day.summary.utilization_rate, 100)
        self.assertEqual(day.summary.utilization_rate, 12.5)

    def test_utilization_is_clamped_to_100(self):
        for _ in range(3):
            add_booking(self.option, self.client_obj, (MONDAY, time(9, 0)), therapist=self.therapist, minutes=240)
        day = ScheduleComposer().get_daily_schedule(self.therapist, MONDAY)
        self.assertEqual(day.summary.total_booked_minutes, 720)
        self.assertEqual(day.summary.utilization_rate, 100.0)
        self.assertEqual(day.summary.available_minutes, 0)

    def test_no_working_hours_means_zero_utilization(self):
        other = make_therapist("Blake")
        day = ScheduleComposer().get_daily_schedule(other, MONDAY)
        self.assertEqual(day.summary.utilization_rate, 0.0)
        self.assertEqual(day.available_slots, [])

    def test_malformed_therapist_id_is_not_found(self):
        with self.assertRaises(Http404):
            get_daily_schedule("abc", MONDAY)

    def test_cancelled_bookings_are_not_listed(self):
        add_booking(
            self.option, self.client_obj, (MONDAY, time(9, 0)),
            therapist=self.therapist, status=Booking.CANCELLED_BY_CLIENT,
        )
        self.assertEqual(get_daily_schedule(self.therapist.pk, MONDAY).summary.booking_count, 0)


class WeeklyAndOverviewTests(TestCase):
    def setUp(self):
        self.option = make_option(duration=60)
        self.client_obj = make_client()

    def test_weekly_average_divides_by_seven(self):
        therapist = make_therapist()
        add_hours(therapist, time(9, 0), time(17, 0))  # Mondays only
        add_booking(self.option, self.client_obj, (MONDAY, time(9, 0)), therapist=therapist, minutes=240)

        week = get_weekly_schedule(therapist.pk, MONDAY)
        self.assertEqual(len(week.days), 7)
        self.assertEqual(week.days[-1].on_date, MONDAY + timedelta(days=6))
        self.assertEqual(week.working_days, 1)
        self.assertEqual(week.total_bookings, 1)
        self.assertEqual(week.total_working_minutes, 480)
        self.assertEqual(week.average_utilization, round(50.0 / 7, 2))

    def test_overview_across_active_therapists(self):
        alex = make_therapist("Alex")
        blake = make_therapist("Blake")
        make_therapist("Retired", is_active=False)
        add_hours(alex, time(9, 0), time(17, 0))
        add_booking(self.option, self.client_obj, (MONDAY, time(9, 0)), therapist=alex, minutes=240)

        overview = get_schedule_overview(MONDAY)
        self.assertEqual(overview.total_therapists, 2)
        self.assertEqual(overview.active_therapists, 1)
        self.assertEqual(overview.total_bookings, 1)
        self.assertEqual(overview.average_utilization, 25.0)
        self.assertEqual([s.therapist for s in overview.schedules], [alex, blake])

    def test_overview_without_therapists(self):
        Therapist.objects.all().delete()
        overview = get_schedule_overview(MONDAY)
        self.assertEqual(overview.total_therapists, 0)
        self.assertEqual(overview.average_utilization, 0.0)


class ScheduleStatsTests(TestCase):
    def setUp(self):
        self.therapist = make_therapist()
        self.option = make_option(duration=60)
        self.client_obj = make_client()
        self.wednesday = MONDAY + timedelta(days=2)
        add_hours(self.therapist, time(9, 0), time(17, 0))
        add_hours(self.therapist, time(9, 0), time(11, 0), specific_date=self.wednesday)

    def book(self, day, at):
        add_booking(self.option, self.client_obj, (day, at), therapist=self.therapist)

    def test_busiest_and_peak_days(self):
        self.book(MONDAY, time(9, 0))
        self.book(MONDAY, time(14, 0))
        self.book(self.wednesday, time(9, 0))
        self.book(self.wednesday, time(10, 0))

        stats = get_schedule_stats(self.therapist.pk, MONDAY)
        # two bookings on both days; the earlier date wins the tie
        self.assertEqual(stats.busiest_day.on_date, MONDAY)
        self.assertEqual(stats.peak_utilization_day.on_date, self.wednesday)
        self.assertEqual(stats.peak_utilization_day.summary.utilization_rate, 100.0)
        self.assertEqual(stats.average_bookings_per_day, 0.57)

        payload = stats.as_dict()
        self.assertEqual(payload["date_range"], {
            "start": MONDAY.isoformat(),
            "end": (MONDAY + timedelta(days=6)).isoformat(),
        })
        self.assertEqual(len(payload["daily_breakdown"]), 7)
        self.assertEqual(payload["summary"]["total_bookings"], 4)
        self.assertEqual(payload["trends"]["busiest_day"]["booking_count"], 2)

    def test_empty_week(self):
        stats = ScheduleComposer().get_schedule_stats(self.therapist, MONDAY)
        self.assertEqual(stats.average_bookings_per_day, 0.0)
        self.assertEqual(stats.busiest_day.on_date, MONDAY)
        self.assertEqual(stats.busiest_day.summary.booking_count, 0)
