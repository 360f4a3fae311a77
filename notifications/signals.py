# notifications/signals.py
#
# Purpose:
# - Email the client when a Booking changes state.
#   * received:  on create (Pending Confirmation)
#   * confirmed: on create as Confirmed, or when status changes to Confirmed
#   * cancelled: when status changes to Cancelled By Client / By Staff
#   * refunded:  when only payment_status changes to (Partially) Refunded
#
# Notes:
# - Delivery is deferred with transaction.on_commit: a rolled-back booking
#   never produces an email.
# - Email failures are logged and recorded as sent=False; they never break
#   the request.
#
import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from booking.models import Booking
from booking.services.notification_service import (
    CANCELLED,
    CONFIRMED,
    RECEIVED,
    REFUNDED,
    NotificationService,
)
from notifications.models import Notification

logger = logging.getLogger(__name__)

REFUNDED_STATUSES = (Booking.PAYMENT_REFUNDED, Booking.PAYMENT_PARTIALLY_REFUNDED)


def event_for(instance: Booking, created: bool, update_fields=None):
    if created:
        return CONFIRMED if instance.status == Booking.CONFIRMED else RECEIVED

    status_saved = update_fields is None or "status" in update_fields
    if status_saved and instance.status == Booking.CONFIRMED:
        return CONFIRMED
    if status_saved and instance.is_cancelled:
        return CANCELLED
    if (
        update_fields is not None
        and "payment_status" in update_fields
        and "status" not in update_fields
        and instance.payment_status in REFUNDED_STATUSES
    ):
        return REFUNDED
    return None


def deliver(booking_id, event):
    booking = (
        Booking.objects
        .select_related("client", "therapist", "service_option__service")
        .get(pk=booking_id)
    )
    service = NotificationService()
    subject, body = service.compose(booking, event)
    sent = service.send(booking.client.email, subject, body)
    Notification.objects.create(
        client=booking.client,
        booking=booking,
        kind=event,
        subject=subject,
        message=body,
        sent=sent,
    )
    if event == CANCELLED:
        service.send_staff_alert(booking)
    logger.info("Notification '%s' for booking #%s (sent=%s)", event, booking_id, sent)


@receiver(post_save, sender=Booking)
def booking_status_notifications(sender, instance: Booking, created: bool, update_fields=None, **kwargs):
    event = event_for(instance, created, update_fields)
    if event is None:
        return
    booking_id = instance.pk
    transaction.on_commit(lambda: deliver(booking_id, event))
