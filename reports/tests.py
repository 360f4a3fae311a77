from datetime import time

from django.contrib.auth.models import User
from django.test import TestCase
from rest_framework.test import APIClient

from booking.tests.factories import MONDAY, add_booking, add_hours, make_client, make_option, make_therapist


class ScheduleOverviewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)

        alex = make_therapist("Alex")
        make_therapist("Blake")
        add_hours(alex, time(9, 0), time(17, 0))
        add_booking(make_option(duration=60), make_client(), (MONDAY, time(9, 0)), therapist=alex, minutes=240)

    def test_staff_only(self):
        self.assertEqual(self.client.get("/api/reports/overview/").status_code, 403)

    def test_overview_summary(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.get("/api/reports/overview/", {"date": MONDAY.isoformat()})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["summary"], {
            "total_therapists": 2,
            "active_therapists": 1,
            "total_bookings": 1,
            "average_utilization": 25.0,
        })
        self.assertEqual([t["therapist"]["name"] for t in resp.data["therapists"]], ["Alex", "Blake"])

    def test_bad_date(self):
        self.client.force_authenticate(self.staff)
        self.assertEqual(self.client.get("/api/reports/overview/", {"date": "tomorrow"}).status_code, 400)
        self.assertEqual(self.client.get("/api/reports/overview/", {"date": "2030-02-30"}).status_code, 400)
