from datetime import time

from django.contrib.auth.models import User
from django.db import connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext

from .factories import MONDAY, add_booking, add_rule, make_client, make_option, make_therapist


class ChangelistQueryTests(TestCase):
    """Changelist query counts must not grow with the number of rows."""

    def setUp(self):
        self.admin = User.objects.create_superuser(username="admin", password="pass12345", email="admin@clinic.test")
        self.client.force_login(self.admin)
        self.option = make_option()
        self.customer = make_client()

    def count_queries(self, url):
        with CaptureQueriesContext(connection) as ctx:
            resp = self.client.get(url)
        self.assertEqual(resp.status_code, 200)
        return len(ctx.captured_queries)

    def test_booking_changelist(self):
        therapist = make_therapist()
        add_booking(self.option, self.customer, (MONDAY, time(9, 0)), therapist=therapist)
        one = self.count_queries("/admin/booking/booking/")

        for hour in (10, 11, 12):
            other = make_therapist(name=f"Therapist {hour}")
            add_booking(
                make_option(name=f"Service {hour}"), make_client(email=f"c{hour}@example.com"),
                (MONDAY, time(hour, 0)), therapist=other,
            )
        self.assertEqual(self.count_queries("/admin/booking/booking/"), one)

    def test_availability_rule_changelist(self):
        add_rule(self.option, time(9, 0), therapist=make_therapist())
        one = self.count_queries("/admin/booking/availabilityrule/")

        for hour in (10, 11, 12):
            add_rule(make_option(name=f"Service {hour}"), time(hour, 0), therapist=make_therapist(name=f"T{hour}"))
        self.assertEqual(self.count_queries("/admin/booking/availabilityrule/"), one)
