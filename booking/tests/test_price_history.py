# booking/tests/test_price_history.py

from datetime import time
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from rest_framework.test import APIClient

from booking.models import Booking, PriceHistory
from booking.services.booking_manager import BookingManager
from booking.services.price_management import PriceManagementService
from booking.services.time_windows import combine

from .factories import MONDAY, add_rule, make_client, make_option


class PriceHistoryTests(TestCase):
    def setUp(self):
        # DRF test client, logged in as staff
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.client.force_authenticate(self.staff)

        self.option = make_option(name="Silk Press", duration=60, price="80.00")

    def test_price_change_creates_history(self):
        # Sanity: no history yet
        self.assertEqual(PriceHistory.objects.count(), 0)

        url = f"/api/service-options/{self.option.id}/"
        resp = self.client.patch(url, data={"price": "85.00"}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Decimal(resp.data["price"]), Decimal("85.00"))

        self.assertEqual(PriceHistory.objects.count(), 1)
        ph = PriceHistory.objects.first()
        self.assertEqual(ph.service_option_id, self.option.id)
        self.assertEqual(ph.old_price, Decimal("80.00"))
        self.assertEqual(ph.new_price, Decimal("85.00"))

        resp = self.client.get(f"/api/service-options/{self.option.id}/price-history/")
        self.assertEqual(len(resp.data), 1)

    def test_no_history_when_price_unchanged(self):
        # PATCH duration only; price should remain the same
        url = f"/api/service-options/{self.option.id}/"
        resp = self.client.patch(url, data={"duration_minutes": 90}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(PriceHistory.objects.count(), 0)

    def test_invalid_price_is_400(self):
        url = f"/api/service-options/{self.option.id}/"
        for bad in ("0", "-5.00", "1000000.00"):
            resp = self.client.patch(url, data={"price": bad}, format="json")
            self.assertEqual(resp.status_code, 400, bad)
        self.option.refresh_from_db()
        self.assertEqual(self.option.price, Decimal("80.00"))

    def test_anonymous_cannot_change_price(self):
        self.client.force_authenticate(None)
        resp = self.client.patch(f"/api/service-options/{self.option.id}/", data={"price": "1.00"}, format="json")
        self.assertEqual(resp.status_code, 403)

    def test_existing_bookings_keep_their_price(self):
        add_rule(self.option, time(9, 0), limit=2)
        booking = BookingManager().create_booking(
            self.option, None, combine(MONDAY, time(9, 0)), make_client()
        )

        PriceManagementService.update_option_price(self.option, "120.00", changed_by=self.staff)

        booking.refresh_from_db()
        self.assertEqual(booking.price_at_booking, Decimal("80.00"))
        later = BookingManager().create_booking(
            self.option, None, combine(MONDAY, time(9, 0)), make_client(email="other@example.com")
        )
        self.assertEqual(later.price_at_booking, Decimal("120.00"))
        self.assertEqual(Booking.objects.count(), 2)

    def test_price_change_summary(self):
        summary = PriceManagementService.get_price_change_summary(self.option, "100.00")
        self.assertEqual(summary["current_price"], "$80.00")
        self.assertEqual(summary["difference"], "$20.00")
        self.assertEqual(summary["percent_change"], 25.0)

    def test_price_preview_endpoint(self):
        url = f"/api/service-options/{self.option.id}/price-preview/"
        resp = self.client.get(url, {"price": "60.00"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["new_price"], "$60.00")
        self.assertEqual(resp.data["difference"], "$-20.00")
        self.assertEqual(resp.data["percent_change"], -25.0)
        # nothing is saved
        self.option.refresh_from_db()
        self.assertEqual(self.option.price, Decimal("80.00"))
        self.assertEqual(PriceHistory.objects.count(), 0)

        self.assertEqual(self.client.get(url, {"price": "free"}).status_code, 400)
        self.assertEqual(self.client.get(url).status_code, 400)

        self.client.force_authenticate(None)
        self.assertEqual(self.client.get(url, {"price": "60.00"}).status_code, 403)
