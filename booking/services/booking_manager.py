"""
booking_manager.py
------------------
Coordinates every write to booking state that matters for scheduling:
creation, status changes, rescheduling, therapist assignment, payment and
cancellation.

Creation protocol:
1) Resolve the rules for the slot (outside the transaction). None -> SlotNotOffered.
2) In one transaction: lock the slot row(s), re-run the capacity check,
   insert the booking as Pending Confirmation with the option's current
   price frozen into price_at_booking.
3) After commit: verify the payment (if a reference was given). A failed
   verification cancels the reservation again (compensating cancellation).

Slot locks:
- Every write locks the pooled key (option, any, date, time); writes naming
  a therapist also lock (option, therapist, date, time). Pooled and
  therapist-specific bookings for the same time therefore serialize.
- PostgreSQL: select_for_update() row lock. SQLite: IMMEDIATE transactions
  (see settings) serialize writers.

Status machine:
  Pending Confirmation -> Confirmed -> Completed
  Pending Confirmation | Confirmed -> Cancelled By Client | Cancelled By Staff
  Confirmed -> No Show
Completed, No Show and both cancelled states are terminal.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import OperationalError, transaction
from django.utils import timezone

from configmgr.models import SystemSetting

from ..exceptions import (
    BookingAlreadyCancelled,
    InvalidStatusTransition,
    PaymentError,
    PaymentVerificationFailed,
    SlotFull,
    SlotNotOffered,
    TherapistOverbooked,
    TransactionConflict,
)
from ..models import Booking, Payment, ServiceOption, SlotLock
from .availability_engine import AvailabilityEngine
from .payment_gateway import get_payment_gateway
from .refund_policy import RefundQuote, quote_refund, to_cents
from .rule_resolution import load_rule_snapshot
from .time_windows import combine, local_slot_parts

logger = logging.getLogger(__name__)

TRANSITIONS = {
    Booking.PENDING: {Booking.CONFIRMED, Booking.CANCELLED_BY_CLIENT, Booking.CANCELLED_BY_STAFF},
    Booking.CONFIRMED: {
        Booking.COMPLETED,
        Booking.NO_SHOW,
        Booking.CANCELLED_BY_CLIENT,
        Booking.CANCELLED_BY_STAFF,
    },
    Booking.COMPLETED: set(),
    Booking.NO_SHOW: set(),
    Booking.CANCELLED_BY_CLIENT: set(),
    Booking.CANCELLED_BY_STAFF: set(),
}

ACTIVE_STATUSES = (Booking.PENDING, Booking.CONFIRMED)

_UNCHANGED = object()


@dataclass
class CancellationResult:
    booking: Booking
    status: str
    refund: Optional[RefundQuote] = None
    refund_reference: str = ""
    refund_error: str = ""

    def as_dict(self):
        return {
            "booking_id": self.booking.pk,
            "status": self.status,
            "payment_status": self.booking.payment_status,
            "refund": self.refund.as_dict() if self.refund else None,
            "refund_reference": self.refund_reference,
            "refund_error": self.refund_error,
        }


class BookingManager:
    def __init__(self, engine=None, gateway=None):
        self.availability = engine or AvailabilityEngine()
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or get_payment_gateway()

    # ---------- helpers ----------

    def _slot_parts(self, start_time):
        if timezone.is_naive(start_time):
            start_time = timezone.make_aware(start_time, timezone.get_current_timezone())
        slot_date, slot_time = local_slot_parts(start_time)
        if combine(slot_date, slot_time) != start_time:
            raise SlotNotOffered("Booking times must fall on a whole minute of a published slot.")
        return start_time, slot_date, slot_time

    def _lock_slot(self, service_option, therapist_id, slot_date, slot_time):
        keys = [SlotLock.key_for(service_option.pk, None, slot_date, slot_time)]
        if therapist_id is not None:
            keys.append(SlotLock.key_for(service_option.pk, therapist_id, slot_date, slot_time))
        for key in keys:
            SlotLock.objects.get_or_create(slot_key=key)
            SlotLock.objects.select_for_update().get(slot_key=key)

    def _require_offered(self, service_option, therapist_id, slot_date, slot_time):
        if not self.availability.is_option_bookable(service_option):
            raise SlotNotOffered("Service option not found or is inactive.")
        rules = load_rule_snapshot(service_option, slot_date)
        if not rules.matching(slot_time, therapist_id):
            raise SlotNotOffered()

    def therapist_soft_limit(self) -> int:
        return SystemSetting.get_int("THERAPIST_SOFT_LIMIT", 5)

    def _check_therapist(self, therapist, start_time, slot_date, slot_time, duration, exclude_booking_id=None):
        if not therapist.is_active:
            raise SlotNotOffered("Selected therapist is not available.")
        if not self.availability.fits_therapist_hours(therapist, slot_date, slot_time, duration):
            raise SlotNotOffered("Selected therapist is not working at this time.")
        qs = (
            Booking.objects
            .filter(therapist=therapist, booking_start_time=start_time)
            .exclude(status__in=Booking.CANCELLED_STATUSES)
        )
        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        if qs.count() >= self.therapist_soft_limit():
            raise TherapistOverbooked()

    def _check_capacity(self, service_option, therapist, slot_date, slot_time, exclude_booking_id=None):
        capacity = self.availability.check_capacity(
            service_option, therapist, slot_date, slot_time, exclude_booking_id=exclude_booking_id
        )
        if not capacity.offered:
            raise SlotNotOffered()
        if capacity.remaining <= 0:
            raise SlotFull(booking_limit=capacity.booking_limit, booked=capacity.booked)
        return capacity

    def _transition(self, booking, new_status):
        allowed = TRANSITIONS.get(booking.status, set())
        if new_status not in allowed:
            raise InvalidStatusTransition(
                f"Cannot change status from {booking.status} to {new_status}."
            )
        booking.status = new_status

    # ---------- create ----------

    def create_booking(self, service_option, therapist, start_time, client,
                       payment_method="", payment_reference=None, client_notes=""):
        """
        Reserve a slot and insert the booking.

        Raises:
            SlotNotOffered, SlotFull, TherapistOverbooked, TransactionConflict,
            PaymentVerificationFailed (after the compensating cancellation).
        """
        start_time, slot_date, slot_time = self._slot_parts(start_time)
        therapist_id = therapist.pk if therapist is not None else None

        self._require_offered(service_option, therapist_id, slot_date, slot_time)

        try:
            with transaction.atomic():
                self._lock_slot(service_option, therapist_id, slot_date, slot_time)
                option = ServiceOption.objects.select_related("service").get(pk=service_option.pk)
                self._check_capacity(option, therapist, slot_date, slot_time)
                if therapist is not None:
                    self._check_therapist(therapist, start_time, slot_date, slot_time, option.duration_minutes)

                booking = Booking.objects.create(
                    client=client,
                    service_option=option,
                    therapist=therapist,
                    booking_start_time=start_time,
                    booking_end_time=start_time + timedelta(minutes=option.duration_minutes),
                    status=Booking.PENDING,
                    payment_method=payment_method or "",
                    payment_status=Booking.PAYMENT_PENDING,
                    price_at_booking=option.price,
                    client_notes=client_notes or "",
                )
        except OperationalError as exc:
            logger.warning("Slot reservation conflict for option %s at %s: %s", service_option.pk, start_time, exc)
            raise TransactionConflict() from exc

        logger.info(
            "Booking #%s reserved: option %s therapist %s at %s",
            booking.pk, option.pk, therapist_id or "any", start_time.isoformat(),
        )

        if payment_reference:
            self._verify_payment(booking, payment_reference)
        return booking

    def _verify_payment(self, booking, reference):
        amount_cents = to_cents(booking.price_at_booking)
        try:
            result = self.gateway.verify(reference, amount_cents)
        except Exception as exc:
            logger.exception("Payment verification raised for booking #%s", booking.pk)
            self._compensate(booking, str(exc))
            raise PaymentVerificationFailed(f"Payment could not be verified: {exc}") from exc

        if not result.ok:
            self._compensate(booking, result.message)
            raise PaymentVerificationFailed(
                f"Payment could not be verified: {result.message}" if result.message else None
            )

        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking.pk)
            Payment.objects.create(
                booking=locked,
                amount=locked.price_at_booking,
                method=locked.payment_method,
                status=Payment.SUCCEEDED,
                provider_reference=result.reference or reference,
                paid_at=timezone.now(),
            )
            locked.payment_status = Booking.PAYMENT_PAID
            self._transition(locked, Booking.CONFIRMED)
            locked.save(update_fields=["payment_status", "status", "updated_at"])
        booking.refresh_from_db()

    def _compensate(self, booking, message):
        """Undo a provisional reservation whose payment did not verify."""
        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking.pk)
            locked.status = Booking.CANCELLED_BY_STAFF
            locked.payment_status = Booking.PAYMENT_FAILED
            locked.cancellation_reason = f"Payment verification failed: {message}".strip()
            locked.cancellation_time = timezone.now()
            locked.save(update_fields=[
                "status", "payment_status", "cancellation_reason", "cancellation_time", "updated_at",
            ])
            Payment.objects.create(
                booking=locked,
                amount=locked.price_at_booking,
                method=locked.payment_method,
                status=Payment.FAILED,
                failure_reason=message or "",
            )
        logger.warning("Booking #%s released after failed payment verification", booking.pk)
        booking.refresh_from_db()

    # ---------- status changes ----------

    def _set_status(self, booking, new_status):
        booking_id = getattr(booking, "pk", booking)
        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking_id)
            self._transition(locked, new_status)
            locked.save(update_fields=["status", "updated_at"])
        logger.info("Booking #%s -> %s", booking_id, new_status)
        return locked

    def confirm_booking(self, booking):
        return self._set_status(booking, Booking.CONFIRMED)

    def complete_booking(self, booking):
        return self._set_status(booking, Booking.COMPLETED)

    def mark_no_show(self, booking):
        return self._set_status(booking, Booking.NO_SHOW)

    # ---------- reschedule / assignment ----------

    def reschedule_booking(self, booking, new_start, therapist=_UNCHANGED):
        """
        Move a pending/confirmed booking to another published slot.
        The booking itself is not counted against the new slot's capacity.
        price_at_booking is left untouched.
        """
        booking_id = getattr(booking, "pk", booking)
        current = Booking.objects.select_related("service_option__service", "therapist").get(pk=booking_id)
        if therapist is _UNCHANGED:
            therapist = current.therapist
        therapist_id = therapist.pk if therapist is not None else None

        new_start, slot_date, slot_time = self._slot_parts(new_start)
        option = current.service_option
        self._require_offered(option, therapist_id, slot_date, slot_time)

        try:
            with transaction.atomic():
                self._lock_slot(option, therapist_id, slot_date, slot_time)
                locked = Booking.objects.select_for_update().get(pk=booking_id)
                if locked.status not in ACTIVE_STATUSES:
                    raise InvalidStatusTransition(
                        f"Only pending or confirmed bookings can be rescheduled (status: {locked.status})."
                    )
                self._check_capacity(option, therapist, slot_date, slot_time, exclude_booking_id=locked.pk)
                if therapist is not None:
                    self._check_therapist(
                        therapist, new_start, slot_date, slot_time, option.duration_minutes,
                        exclude_booking_id=locked.pk,
                    )
                locked.booking_start_time = new_start
                locked.booking_end_time = new_start + timedelta(minutes=option.duration_minutes)
                locked.therapist = therapist
                locked.save(update_fields=["booking_start_time", "booking_end_time", "therapist", "updated_at"])
        except OperationalError as exc:
            logger.warning("Reschedule conflict for booking #%s: %s", booking_id, exc)
            raise TransactionConflict() from exc

        logger.info("Booking #%s rescheduled to %s", booking_id, new_start.isoformat())
        return locked

    def assign_therapist(self, booking, therapist):
        """
        Attach a therapist to a booking made for "any therapist".

        The therapist must publish the slot and still have room in it, under
        the same slot locks as create_booking. The booking itself is not
        counted against that room.
        """
        booking_id = getattr(booking, "pk", booking)
        current = Booking.objects.select_related("service_option__service").get(pk=booking_id)
        if current.status not in ACTIVE_STATUSES:
            raise InvalidStatusTransition(
                f"Cannot assign a therapist to a booking with status {current.status}."
            )
        option = current.service_option
        slot_date, slot_time = local_slot_parts(current.booking_start_time)
        self._require_offered(option, therapist.pk, slot_date, slot_time)

        try:
            with transaction.atomic():
                self._lock_slot(option, therapist.pk, slot_date, slot_time)
                locked = Booking.objects.select_for_update().get(pk=booking_id)
                if locked.status not in ACTIVE_STATUSES:
                    raise InvalidStatusTransition(
                        f"Cannot assign a therapist to a booking with status {locked.status}."
                    )
                self._check_capacity(option, therapist, slot_date, slot_time, exclude_booking_id=locked.pk)
                duration = int(locked.duration.total_seconds() // 60)
                self._check_therapist(
                    therapist, locked.booking_start_time, slot_date, slot_time, duration,
                    exclude_booking_id=locked.pk,
                )
                locked.therapist = therapist
                locked.save(update_fields=["therapist", "updated_at"])
        except OperationalError as exc:
            logger.warning("Assignment conflict for booking #%s: %s", booking_id, exc)
            raise TransactionConflict() from exc

        logger.info("Booking #%s assigned to therapist %s", booking_id, therapist.pk)
        return locked

    # ---------- payments ----------

    def take_payment(self, booking, method="Cash"):
        """Charge the frozen booking price (e.g. at the front desk) and confirm."""
        booking_id = getattr(booking, "pk", booking)
        current = Booking.objects.get(pk=booking_id)
        if current.status not in ACTIVE_STATUSES:
            raise InvalidStatusTransition(f"Cannot take payment for a booking with status {current.status}.")
        if current.payment_status == Booking.PAYMENT_PAID:
            raise InvalidStatusTransition("Booking is already paid.")

        amount_cents = to_cents(current.price_at_booking)
        result = self.gateway.charge(amount_cents, _currency(), f"Booking #{booking_id}")
        if not result.ok:
            raise PaymentError(result.message or None)

        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking_id)
            Payment.objects.create(
                booking=locked,
                amount=locked.price_at_booking,
                currency=_currency(),
                method=method,
                status=Payment.SUCCEEDED,
                provider_reference=result.reference,
                paid_at=timezone.now(),
            )
            locked.payment_method = method
            locked.payment_status = Booking.PAYMENT_PAID
            fields = ["payment_method", "payment_status", "updated_at"]
            if locked.status == Booking.PENDING:
                self._transition(locked, Booking.CONFIRMED)
                fields.append("status")
            locked.save(update_fields=fields)
        return locked

    # ---------- cancel ----------

    def cancel_booking(self, booking, initiator="staff", reason="", now=None) -> CancellationResult:
        """
        Cancel a booking and, when it was paid, refund under the tiered policy.

        - A booking that is already cancelled raises BookingAlreadyCancelled
          (no second refund).
        - Completed / No Show bookings raise InvalidStatusTransition.
        - The refund amount is fixed inside the transaction; the gateway is
          called after commit. A gateway failure is logged and reported in
          the result, the cancellation itself stands.
        """
        booking_id = getattr(booking, "pk", booking)
        now = now or timezone.now()
        new_status = Booking.CANCELLED_BY_CLIENT if initiator == "client" else Booking.CANCELLED_BY_STAFF

        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking_id)
            if locked.is_cancelled:
                raise BookingAlreadyCancelled()
            self._transition(locked, new_status)

            quote = None
            if locked.payment_status == Booking.PAYMENT_PAID:
                quote = quote_refund(locked.price_at_booking, locked.booking_start_time, now)

            locked.cancellation_reason = reason or ""
            locked.cancellation_time = now
            locked.save(update_fields=["status", "cancellation_reason", "cancellation_time", "updated_at"])

        logger.info("Booking #%s %s", booking_id, new_status.lower())
        result = CancellationResult(booking=locked, status=locked.status, refund=quote)
        if quote is not None and quote.amount_cents > 0:
            self._issue_refund(locked, quote, result)
        return result

    def _issue_refund(self, booking, quote, result):
        payment = booking.payments.filter(status=Payment.SUCCEEDED).first()
        if payment is None:
            result.refund_error = "No successful payment on record."
            logger.warning("Booking #%s is marked paid but has no successful payment", booking.pk)
            return

        try:
            gateway_result = self.gateway.refund(payment.provider_reference, quote.amount_cents)
        except Exception as exc:
            logger.exception("Refund failed for booking #%s", booking.pk)
            result.refund_error = str(exc)
            return
        if not gateway_result.ok:
            logger.error("Refund rejected for booking #%s: %s", booking.pk, gateway_result.message)
            result.refund_error = gateway_result.message or "Refund rejected."
            return

        partial = quote.amount_cents < to_cents(payment.amount)
        with transaction.atomic():
            payment.status = Payment.PARTIALLY_REFUNDED if partial else Payment.REFUNDED
            payment.refund_amount = quote.amount
            payment.refund_reference = gateway_result.reference
            payment.refunded_at = timezone.now()
            payment.save(update_fields=["status", "refund_amount", "refund_reference", "refunded_at"])

            booking.payment_status = (
                Booking.PAYMENT_PARTIALLY_REFUNDED if partial else Booking.PAYMENT_REFUNDED
            )
            booking.save(update_fields=["payment_status", "updated_at"])
        result.refund_reference = gateway_result.reference


def _currency():
    return getattr(settings, "DEFAULT_CURRENCY", "CAD")
