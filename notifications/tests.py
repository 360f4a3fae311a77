from datetime import time

from django.core import mail
from django.db import transaction
from django.test import TestCase, override_settings

from booking.models import Booking
from booking.services.booking_manager import BookingManager
from booking.services.time_windows import combine
from booking.tests.factories import MONDAY, add_rule, make_client, make_option, make_therapist
from notifications.models import Notification


class NotificationTests(TestCase):
    def setUp(self):
        self.option = make_option(name="Deep Tissue", duration=60, price="100.00")
        self.therapist = make_therapist()
        self.customer = make_client(email="test@example.com")
        add_rule(self.option, time(9, 0), therapist=self.therapist, limit=2)
        self.manager = BookingManager()
        self.start = combine(MONDAY, time(9, 0))

    def book(self, **kwargs):
        with self.captureOnCommitCallbacks(execute=True):
            return self.manager.create_booking(self.option, self.therapist, self.start, self.customer, **kwargs)

    def test_received_email_on_create(self):
        booking = self.book()
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["test@example.com"])
        self.assertEqual(mail.outbox[0].subject, f"Booking Received #{booking.pk}")
        self.assertIn("Deep Tissue", mail.outbox[0].body)
        self.assertEqual(Notification.objects.get().kind, "received")

    def test_email_sent_when_booking_confirmed(self):
        booking = self.book()
        mail.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            self.manager.confirm_booking(booking)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("confirmed", mail.outbox[0].body)
        self.assertTrue(Notification.objects.filter(kind="confirmed", sent=True).exists())

    @override_settings(STAFF_ALERT_EMAIL="frontdesk@clinic.test")
    def test_cancellation_emails_client_and_staff(self):
        booking = self.book()
        mail.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            self.manager.cancel_booking(booking, initiator="client", reason="Feeling unwell")

        recipients = [m.to for m in mail.outbox]
        self.assertEqual(recipients, [["test@example.com"], ["frontdesk@clinic.test"]])
        self.assertIn("Feeling unwell", mail.outbox[0].body)
        self.assertIn("CANCELLED", mail.outbox[1].subject)

    def test_refund_email_after_paid_cancellation(self):
        booking = self.book(payment_method="Cash", payment_reference="receipt-7")
        self.assertEqual(booking.status, Booking.CONFIRMED)
        mail.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            self.manager.cancel_booking(booking, initiator="client")

        kinds = list(Notification.objects.filter(booking=booking).values_list("kind", flat=True))
        self.assertIn("cancelled", kinds)
        self.assertIn("refunded", kinds)
        refund_mail = [m for m in mail.outbox if m.subject.startswith("Refund")]
        self.assertEqual(len(refund_mail), 1)
        self.assertIn("$100.00", refund_mail[0].body)

    def test_rolled_back_booking_sends_nothing(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(RuntimeError):
                with transaction.atomic():
                    self.manager.create_booking(self.option, self.therapist, self.start, self.customer)
                    raise RuntimeError("abort")

        self.assertEqual(callbacks, [])
        self.assertEqual(len(mail.outbox), 0)
        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(Notification.objects.count(), 0)

    def test_unrelated_update_sends_nothing(self):
        booking = self.book()
        mail.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            booking.internal_notes = "prefers lavender oil"
            booking.save(update_fields=["internal_notes"])

        self.assertEqual(len(mail.outbox), 0)
