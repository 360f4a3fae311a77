from datetime import time

from django.contrib.auth.models import User
from django.test import TestCase
from rest_framework.test import APIClient

from booking.tests.factories import MONDAY, add_booking, add_hours, make_client, make_option, make_therapist
from staff.models import Schedule


class ScheduleApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.therapist = make_therapist()

    def test_schedules_are_staff_only(self):
        self.assertEqual(self.client.get("/api/staff/schedules/").status_code, 403)
        self.client.force_authenticate(self.staff)
        self.assertEqual(self.client.get("/api/staff/schedules/").status_code, 200)

    def test_create_weekly_hours(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/staff/schedules/", {
            "therapist": self.therapist.pk,
            "type": Schedule.WORKING_HOURS,
            "day_of_week": 1,
            "start_time": "09:00",
            "end_time": "17:00",
        }, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(Schedule.objects.get().day_of_week, 1)

    def test_both_selectors_is_400(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/staff/schedules/", {
            "therapist": self.therapist.pk,
            "day_of_week": 1,
            "specific_date": MONDAY.isoformat(),
            "start_time": "09:00",
            "end_time": "17:00",
        }, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Schedule.objects.count(), 0)

    def test_closed_day_marker_is_accepted(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/staff/schedules/", {
            "therapist": self.therapist.pk,
            "type": Schedule.WORKING_HOURS,
            "specific_date": MONDAY.isoformat(),
            "start_time": "00:00",
            "end_time": "00:00",
        }, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(Schedule.objects.get().marks_closed)

    def test_weekly_time_off_with_equal_times_is_400(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/staff/schedules/", {
            "therapist": self.therapist.pk,
            "type": Schedule.TIME_OFF,
            "day_of_week": 1,
            "start_time": "12:00",
            "end_time": "12:00",
        }, format="json")
        self.assertEqual(resp.status_code, 400)


class TherapistScheduleViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.therapist = make_therapist()
        add_hours(self.therapist, time(9, 0), time(17, 0))
        option = make_option(duration=60)
        add_booking(option, make_client(), (MONDAY, time(10, 0)), therapist=self.therapist)

    def test_daily_requires_staff(self):
        url = f"/api/staff/therapists/{self.therapist.pk}/daily/"
        self.assertEqual(self.client.get(url, {"date": MONDAY.isoformat()}).status_code, 403)

    def test_daily(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.get(f"/api/staff/therapists/{self.therapist.pk}/daily/", {"date": MONDAY.isoformat()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["date"], MONDAY.isoformat())
        self.assertEqual(resp.data["summary"]["booking_count"], 1)
        self.assertEqual(resp.data["summary"]["total_working_hours"], 8)
        self.assertEqual(resp.data["summary"]["utilization_rate"], 12.5)
        self.assertEqual(
            [(s["start_time"], s["end_time"]) for s in resp.data["available_slots"]],
            [("09:00", "10:00"), ("11:00", "17:00")],
        )

    def test_daily_bad_date(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.get(f"/api/staff/therapists/{self.therapist.pk}/daily/", {"date": "2030-13-45"})
        self.assertEqual(resp.status_code, 400)

    def test_weekly(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.get(f"/api/staff/therapists/{self.therapist.pk}/weekly/", {"start": MONDAY.isoformat()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.data["days"]), 7)
        self.assertEqual(resp.data["summary"]["working_days"], 1)
        self.assertEqual(resp.data["summary"]["total_bookings"], 1)

    def test_unknown_therapist_is_404(self):
        self.client.force_authenticate(self.staff)
        self.assertEqual(self.client.get("/api/staff/therapists/9999/daily/").status_code, 404)

    def test_start_times_default_to_sixty_minutes(self):
        self.client.force_authenticate(self.staff)
        url = f"/api/staff/therapists/{self.therapist.pk}/availability/"
        resp = self.client.get(url, {"date": MONDAY.isoformat()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["duration"], 60)
        self.assertEqual(resp.data["available_slots"][:3], ["09:00", "11:00", "11:15"])
        self.assertEqual(resp.data["available_slots"][-1], "16:00")
        self.assertEqual(resp.data["total_slots"], 22)

    def test_start_times_duration_bounds(self):
        self.client.force_authenticate(self.staff)
        url = f"/api/staff/therapists/{self.therapist.pk}/availability/"
        for bad in ("10", "481", "abc", "0"):
            resp = self.client.get(url, {"date": MONDAY.isoformat(), "duration": bad})
            self.assertEqual(resp.status_code, 400, bad)
        resp = self.client.get(url, {"date": MONDAY.isoformat(), "duration": "360"})
        self.assertEqual(resp.data["available_slots"], ["11:00"])

    def test_stats(self):
        url = f"/api/staff/therapists/{self.therapist.pk}/stats/"
        self.assertEqual(self.client.get(url, {"start": MONDAY.isoformat()}).status_code, 403)

        self.client.force_authenticate(self.staff)
        resp = self.client.get(url, {"start": MONDAY.isoformat()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["trends"]["busiest_day"], {"date": MONDAY.isoformat(), "booking_count": 1})
        self.assertEqual(resp.data["trends"]["average_bookings_per_day"], 0.14)
        self.assertEqual(self.client.get(url, {"start": "2030-02-30"}).status_code, 400)
