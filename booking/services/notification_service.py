"""
NotificationService
-------------------
Builds and sends the client emails for booking events.

Events:
- received:   booking reserved, waiting for confirmation/payment
- confirmed:  booking confirmed (staff action or verified payment)
- cancelled:  booking cancelled by client or staff (includes the reason)
- refunded:   refund issued after a cancellation

Delivery goes through django.core.mail.send_mail, so EMAIL_BACKEND decides
whether mail is printed (console backend in dev) or sent over SMTP.
The notifications app calls this after the booking transaction commits.
"""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

logger = logging.getLogger(__name__)

RECEIVED = "received"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
REFUNDED = "refunded"


def _when(booking) -> str:
    local = timezone.localtime(booking.booking_start_time)
    return local.strftime("%A, %B %d, %Y at %I:%M %p")


class NotificationService:
    def __init__(self, clinic_name=None):
        self.clinic_name = clinic_name or getattr(settings, "CLINIC_NAME", "our clinic")

    def _details(self, booking) -> str:
        option = booking.service_option
        therapist = booking.therapist.name if booking.therapist_id else "Any available therapist"
        return (
            f"Booking ID: {booking.pk}\n"
            f"Service: {option.service.name} ({option.option_name or f'{option.duration_minutes} min'})\n"
            f"Date & Time: {_when(booking)}\n"
            f"Therapist: {therapist}\n"
            f"Price: ${booking.price_at_booking}\n"
        )

    def compose(self, booking, event):
        """Return (subject, body) for `event`."""
        client = booking.client
        greeting = f"Hi {client.first_name or client.full_name},\n\n"

        if event == RECEIVED:
            return (
                f"Booking Received #{booking.pk}",
                greeting
                + "We have received your booking request. We will confirm it shortly.\n\n"
                + self._details(booking),
            )
        if event == CONFIRMED:
            return (
                f"Booking Confirmation #{booking.pk}",
                greeting
                + "Your appointment is confirmed.\n\n"
                + self._details(booking)
                + f"\nWe look forward to seeing you at {self.clinic_name}!",
            )
        if event == CANCELLED:
            reason = booking.cancellation_reason or "No reason given"
            return (
                f"Booking #{booking.pk} Cancelled",
                greeting
                + f"Your appointment on {_when(booking)} has been cancelled.\n"
                + f"Reason: {reason}\n\n"
                + "If this was unexpected, please reply to this email.",
            )
        if event == REFUNDED:
            payment = booking.payments.exclude(refund_amount=None).first()
            amount = payment.refund_amount if payment else "0.00"
            return (
                f"Refund for Booking #{booking.pk}",
                greeting
                + f"A refund of ${amount} has been issued for your cancelled appointment on {_when(booking)}.\n"
                + "It may take a few business days to appear on your statement.",
            )
        raise ValueError(f"Unknown notification event: {event}")

    def send(self, to_email, subject, body) -> bool:
        """Send one email. Delivery errors are logged and reported as False."""
        if not to_email:
            return False
        try:
            send_mail(
                subject=subject,
                message=body,
                from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
                recipient_list=[to_email],
                fail_silently=False,
            )
        except Exception:
            logger.exception("Email to %s failed (%s)", to_email, subject)
            return False
        return True

    def send_staff_alert(self, booking) -> bool:
        alert_to = getattr(settings, "STAFF_ALERT_EMAIL", "")
        if not alert_to:
            return False
        client = booking.client
        body = (
            f"Booking #{booking.pk} was set to '{booking.status}'.\n"
            f"Client: {client.full_name} ({client.email})\n"
            + self._details(booking)
            + f"Cancellation Time: {booking.cancellation_time or timezone.now()}\n"
        )
        return self.send(alert_to, f"ALERT: Booking #{booking.pk} CANCELLED", body)
