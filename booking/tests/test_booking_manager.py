from datetime import time, timedelta
from decimal import Decimal

from django.test import TestCase

from booking.exceptions import (
    BookingAlreadyCancelled,
    InvalidStatusTransition,
    PaymentVerificationFailed,
    SlotFull,
    SlotNotOffered,
    TherapistOverbooked,
)
from booking.models import Booking, Payment
from booking.services.booking_manager import BookingManager
from booking.services.payment_gateway import BasePaymentGateway, GatewayResult
from booking.services.price_management import PriceManagementService
from booking.services.time_windows import combine
from configmgr.models import SystemSetting

from .factories import MONDAY, add_hours, add_rule, make_client, make_option, make_therapist


class FakeGateway(BasePaymentGateway):
    """Records calls; results are configured per test."""

    def __init__(self, verify_ok=True, refund_ok=True, raise_on=None):
        self.verify_ok = verify_ok
        self.refund_ok = refund_ok
        self.raise_on = raise_on
        self.calls = []

    def verify(self, reference, amount_cents):
        self.calls.append(("verify", reference, amount_cents))
        if self.raise_on == "verify":
            raise RuntimeError("gateway down")
        if not self.verify_ok:
            return GatewayResult(ok=False, message="card declined")
        return GatewayResult(ok=True, reference=reference, amount_cents=amount_cents)

    def charge(self, amount_cents, currency, description=""):
        self.calls.append(("charge", amount_cents, currency))
        return GatewayResult(ok=True, reference="ch_1", amount_cents=amount_cents)

    def refund(self, reference, amount_cents):
        self.calls.append(("refund", reference, amount_cents))
        if self.raise_on == "refund":
            raise RuntimeError("gateway down")
        if not self.refund_ok:
            return GatewayResult(ok=False, message="refund rejected")
        return GatewayResult(ok=True, reference="re_1", amount_cents=amount_cents)

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]


NINE = combine(MONDAY, time(9, 0))


class CreateBookingTests(TestCase):
    def setUp(self):
        self.option = make_option(duration=60, price="100.00")
        self.therapist = make_therapist()
        self.client_obj = make_client()
        self.gateway = FakeGateway()
        self.manager = BookingManager(gateway=self.gateway)

    def test_creates_pending_booking_with_frozen_price(self):
        add_rule(self.option, time(9, 0), therapist=self.therapist)
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)

        self.assertEqual(booking.status, Booking.PENDING)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PENDING)
        self.assertEqual(booking.price_at_booking, Decimal("100.00"))
        self.assertEqual(booking.booking_end_time, NINE + timedelta(minutes=60))
        self.assertEqual(self.gateway.calls, [])

    def test_slot_without_rule_is_not_offered(self):
        with self.assertRaises(SlotNotOffered):
            self.manager.create_booking(self.option, None, NINE, self.client_obj)
        self.assertEqual(Booking.objects.count(), 0)

    def test_start_must_be_a_whole_minute(self):
        add_rule(self.option, time(9, 0))
        with self.assertRaises(SlotNotOffered):
            self.manager.create_booking(self.option, None, NINE + timedelta(seconds=30), self.client_obj)

    def test_inactive_option_is_not_offered(self):
        add_rule(self.option, time(9, 0))
        self.option.service.is_active = False
        self.option.service.save()
        with self.assertRaises(SlotNotOffered):
            self.manager.create_booking(self.option, None, NINE, self.client_obj)

    def test_last_place_then_full(self):
        add_rule(self.option, time(9, 0), therapist=self.therapist, limit=2)
        self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        self.manager.create_booking(self.option, self.therapist, NINE, make_client("b@example.com"))

        with self.assertRaises(SlotFull):
            self.manager.create_booking(self.option, self.therapist, NINE, make_client("c@example.com"))
        self.assertEqual(Booking.objects.count(), 2)

    def test_pooled_booking_counts_against_therapist_pool(self):
        add_rule(self.option, time(9, 0), therapist=self.therapist, limit=1)
        self.manager.create_booking(self.option, None, NINE, self.client_obj)
        with self.assertRaises(SlotFull):
            self.manager.create_booking(self.option, None, NINE, make_client("b@example.com"))

    def test_therapist_must_be_working(self):
        add_rule(self.option, time(9, 0), therapist=self.therapist)
        add_hours(self.therapist, time(12, 0), time(17, 0))
        with self.assertRaises(SlotNotOffered):
            self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)

    def test_therapist_soft_limit(self):
        SystemSetting.objects.create(key="THERAPIST_SOFT_LIMIT", value="1")
        other_option = make_option(name="Facial")
        add_rule(self.option, time(9, 0), therapist=self.therapist)
        add_rule(other_option, time(9, 0), therapist=self.therapist)

        self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        with self.assertRaises(TherapistOverbooked):
            self.manager.create_booking(other_option, self.therapist, NINE, make_client("b@example.com"))

    def test_price_change_does_not_touch_existing_booking(self):
        add_rule(self.option, time(9, 0))
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)

        PriceManagementService.update_option_price(self.option, "150.00")

        booking.refresh_from_db()
        self.assertEqual(booking.price_at_booking, Decimal("100.00"))
        self.assertEqual(self.option.price, Decimal("150.00"))


class PaymentVerificationTests(TestCase):
    def setUp(self):
        self.option = make_option(price="80.00")
        self.client_obj = make_client()
        add_rule(self.option, time(9, 0), limit=1)

    def test_verified_payment_confirms_booking(self):
        gateway = FakeGateway()
        booking = BookingManager(gateway=gateway).create_booking(
            self.option, None, NINE, self.client_obj,
            payment_method="Credit Card", payment_reference="pi_123",
        )

        self.assertEqual(gateway.calls_named("verify"), [("verify", "pi_123", 8000)])
        self.assertEqual(booking.status, Booking.CONFIRMED)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)
        payment = booking.payments.get()
        self.assertEqual(payment.status, Payment.SUCCEEDED)
        self.assertEqual(payment.amount, Decimal("80.00"))

    def test_failed_verification_releases_the_slot(self):
        manager = BookingManager(gateway=FakeGateway(verify_ok=False))
        with self.assertRaises(PaymentVerificationFailed):
            manager.create_booking(self.option, None, NINE, self.client_obj, payment_reference="pi_bad")

        booking = Booking.objects.get()
        self.assertEqual(booking.status, Booking.CANCELLED_BY_STAFF)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_FAILED)
        self.assertIn("Payment verification failed", booking.cancellation_reason)
        self.assertEqual(booking.payments.get().status, Payment.FAILED)

        # capacity is free again
        again = BookingManager(gateway=FakeGateway()).create_booking(
            self.option, None, NINE, make_client("b@example.com")
        )
        self.assertEqual(again.status, Booking.PENDING)

    def test_gateway_exception_is_compensated(self):
        manager = BookingManager(gateway=FakeGateway(raise_on="verify"))
        with self.assertRaises(PaymentVerificationFailed):
            manager.create_booking(self.option, None, NINE, self.client_obj, payment_reference="pi_1")
        self.assertEqual(Booking.objects.get().status, Booking.CANCELLED_BY_STAFF)

    def test_take_payment_charges_and_confirms(self):
        gateway = FakeGateway()
        manager = BookingManager(gateway=gateway)
        booking = manager.create_booking(self.option, None, NINE, self.client_obj)

        booking = manager.take_payment(booking, method="Cash")
        self.assertEqual(gateway.calls_named("charge"), [("charge", 8000, "CAD")])
        self.assertEqual(booking.status, Booking.CONFIRMED)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(booking.payments.get().provider_reference, "ch_1")


class CancelBookingTests(TestCase):
    def setUp(self):
        self.option = make_option(price="100.00")
        self.client_obj = make_client()
        add_rule(self.option, time(9, 0), limit=1)
        self.gateway = FakeGateway()
        self.manager = BookingManager(gateway=self.gateway)

    def paid_booking(self):
        return self.manager.create_booking(self.option, None, NINE, self.client_obj, payment_reference="pi_1")

    def test_full_refund_more_than_24h_ahead(self):
        booking = self.paid_booking()
        result = self.manager.cancel_booking(booking, initiator="client", reason="sick", now=NINE - timedelta(hours=48))

        self.assertEqual(result.status, Booking.CANCELLED_BY_CLIENT)
        self.assertEqual(result.refund.amount, Decimal("100.00"))
        self.assertEqual(self.gateway.calls_named("refund"), [("refund", "pi_1", 10000)])

        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PAYMENT_REFUNDED)
        self.assertEqual(booking.cancellation_reason, "sick")
        self.assertEqual(booking.price_at_booking, Decimal("100.00"))
        payment = booking.payments.get(status=Payment.REFUNDED)
        self.assertEqual(payment.refund_amount, Decimal("100.00"))

    def test_partial_refund_between_12_and_24h(self):
        booking = self.paid_booking()
        result = self.manager.cancel_booking(booking, initiator="staff", now=NINE - timedelta(hours=18))

        self.assertEqual(result.status, Booking.CANCELLED_BY_STAFF)
        self.assertEqual(result.refund.amount, Decimal("50.00"))
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PARTIALLY_REFUNDED)

    def test_no_refund_inside_12h(self):
        booking = self.paid_booking()
        result = self.manager.cancel_booking(booking, initiator="client", now=NINE - timedelta(hours=1))

        self.assertEqual(result.refund.amount, Decimal("0.00"))
        self.assertEqual(self.gateway.calls_named("refund"), [])
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)

    def test_second_cancel_raises_and_does_not_refund_again(self):
        booking = self.paid_booking()
        self.manager.cancel_booking(booking, initiator="client", now=NINE - timedelta(hours=48))
        with self.assertRaises(BookingAlreadyCancelled):
            self.manager.cancel_booking(booking, initiator="client", now=NINE - timedelta(hours=47))
        self.assertEqual(len(self.gateway.calls_named("refund")), 1)

    def test_unpaid_booking_has_no_refund(self):
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        result = self.manager.cancel_booking(booking, initiator="client")
        self.assertIsNone(result.refund)
        self.assertEqual(result.as_dict()["refund"], None)

    def test_gateway_refund_failure_keeps_cancellation(self):
        manager = BookingManager(gateway=FakeGateway(raise_on="refund"))
        booking = manager.create_booking(self.option, None, NINE, self.client_obj, payment_reference="pi_1")

        result = manager.cancel_booking(booking, initiator="client", now=NINE - timedelta(hours=48))
        self.assertEqual(result.refund_error, "gateway down")
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.CANCELLED_BY_CLIENT)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)

    def test_completed_booking_cannot_be_cancelled(self):
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        self.manager.confirm_booking(booking)
        self.manager.complete_booking(booking)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.cancel_booking(booking)

    def test_cancelling_frees_the_slot(self):
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        self.manager.cancel_booking(booking)
        self.manager.create_booking(self.option, None, NINE, make_client("b@example.com"))


class StatusAndRescheduleTests(TestCase):
    def setUp(self):
        self.option = make_option(price="100.00")
        self.therapist = make_therapist()
        self.client_obj = make_client()
        self.manager = BookingManager(gateway=FakeGateway())
        add_rule(self.option, time(9, 0), therapist=self.therapist, limit=1)
        add_rule(self.option, time(10, 0), therapist=self.therapist, limit=1)

    def test_confirm_complete(self):
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        self.assertEqual(self.manager.confirm_booking(booking).status, Booking.CONFIRMED)
        self.assertEqual(self.manager.complete_booking(booking).status, Booking.COMPLETED)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.mark_no_show(booking)

    def test_no_show_requires_confirmed(self):
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.mark_no_show(booking)
        self.manager.confirm_booking(booking)
        self.assertEqual(self.manager.mark_no_show(booking).status, Booking.NO_SHOW)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.complete_booking(booking)

    def test_reschedule_moves_booking_and_keeps_price(self):
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        PriceManagementService.update_option_price(self.option, "120.00")

        ten = combine(MONDAY, time(10, 0))
        moved = self.manager.reschedule_booking(booking, ten)
        self.assertEqual(moved.booking_start_time, ten)
        self.assertEqual(moved.booking_end_time, ten + timedelta(minutes=60))
        self.assertEqual(moved.price_at_booking, Decimal("100.00"))
        self.assertEqual(moved.therapist, self.therapist)

    def test_reschedule_into_own_slot_ignores_itself(self):
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        self.assertEqual(self.manager.reschedule_booking(booking, NINE).booking_start_time, NINE)

    def test_reschedule_into_full_slot(self):
        ten = combine(MONDAY, time(10, 0))
        self.manager.create_booking(self.option, self.therapist, ten, make_client("b@example.com"))
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        with self.assertRaises(SlotFull):
            self.manager.reschedule_booking(booking, ten)

    def test_cancelled_booking_cannot_be_rescheduled(self):
        booking = self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        self.manager.cancel_booking(booking)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.reschedule_booking(booking, combine(MONDAY, time(10, 0)))

    def test_assign_therapist_to_pooled_booking(self):
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        assigned = self.manager.assign_therapist(booking, self.therapist)
        self.assertEqual(assigned.therapist, self.therapist)

    def test_assign_therapist_outside_hours(self):
        add_hours(self.therapist, time(13, 0), time(17, 0))
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        with self.assertRaises(SlotNotOffered):
            self.manager.assign_therapist(booking, self.therapist)

    def test_assign_cannot_push_therapist_over_limit(self):
        add_rule(self.option, time(9, 0), therapist=None, limit=1)
        self.manager.create_booking(self.option, self.therapist, NINE, self.client_obj)
        pooled = self.manager.create_booking(self.option, None, NINE, make_client("pool@example.com"))

        with self.assertRaises(SlotFull):
            self.manager.assign_therapist(pooled, self.therapist)

        pooled.refresh_from_db()
        self.assertIsNone(pooled.therapist)
        at_slot = (
            Booking.objects
            .filter(therapist=self.therapist, booking_start_time=NINE)
            .exclude(status__in=Booking.CANCELLED_STATUSES)
        )
        self.assertEqual(at_slot.count(), 1)

    def test_assign_requires_therapist_to_offer_the_slot(self):
        blake = make_therapist("Blake")
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        with self.assertRaises(SlotNotOffered):
            self.manager.assign_therapist(booking, blake)

    def test_assign_cancelled_booking_is_rejected(self):
        booking = self.manager.create_booking(self.option, None, NINE, self.client_obj)
        self.manager.cancel_booking(booking)
        with self.assertRaises(InvalidStatusTransition):
            self.manager.assign_therapist(booking, self.therapist)
