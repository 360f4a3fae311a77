"""
Service-layer entry points keyed by ids.

Views, management commands and other apps call these; the classes behind
them (AvailabilityEngine, ScheduleComposer, BookingManager) can also be
used directly when a caller already holds model instances.
"""

from rest_framework.generics import get_object_or_404

from ..models import Booking, Service, ServiceOption, Therapist
from .availability_engine import AvailabilityEngine
from .booking_manager import BookingManager, CancellationResult
from .refund_policy import calculate_refund, quote_refund
from .schedule_composer import ScheduleComposer
from .slot_aggregator import SlotAggregator

__all__ = [
    "BookingManager",
    "CancellationResult",
    "assign_therapist",
    "calculate_refund",
    "cancel_booking",
    "complete_booking",
    "confirm_booking",
    "create_booking",
    "get_available_slots",
    "get_daily_schedule",
    "get_schedule_overview",
    "get_schedule_stats",
    "get_start_times",
    "get_weekly_schedule",
    "mark_no_show",
    "quote_refund",
    "reschedule_booking",
]


def get_daily_schedule(therapist_id, on_date):
    therapist = get_object_or_404(Therapist, pk=therapist_id)
    return ScheduleComposer().get_daily_schedule(therapist, on_date)


def get_weekly_schedule(therapist_id, start_date):
    therapist = get_object_or_404(Therapist, pk=therapist_id)
    return ScheduleComposer().get_weekly_schedule(therapist, start_date)


def get_schedule_overview(on_date):
    return ScheduleComposer().get_schedule_overview(on_date)


def get_schedule_stats(therapist_id, start_date):
    therapist = get_object_or_404(Therapist, pk=therapist_id)
    return ScheduleComposer().get_schedule_stats(therapist, start_date)


def get_start_times(therapist_id, on_date, duration):
    therapist = get_object_or_404(Therapist, pk=therapist_id)
    return SlotAggregator().get_start_times(therapist, on_date, duration)


def get_available_slots(service_id, service_option_id, therapist_id, on_date):
    """Slots for an option of `service_id`; an option of another service lists nothing."""
    service = get_object_or_404(Service, pk=service_id)
    option = get_object_or_404(ServiceOption.objects.select_related("service"), pk=service_option_id)
    if option.service_id != service.pk:
        return []
    therapist = None
    if therapist_id is not None:
        therapist = get_object_or_404(Therapist, pk=therapist_id)
    return AvailabilityEngine().get_available_slots(option, therapist, on_date)


def create_booking(service_option_id, therapist_id, start_time, client, **kwargs):
    option = get_object_or_404(ServiceOption.objects.select_related("service"), pk=service_option_id)
    therapist = get_object_or_404(Therapist, pk=therapist_id) if therapist_id is not None else None
    return BookingManager().create_booking(option, therapist, start_time, client, **kwargs)


def cancel_booking(booking_id, initiator="staff", reason="", now=None):
    booking = get_object_or_404(Booking, pk=booking_id)
    return BookingManager().cancel_booking(booking, initiator=initiator, reason=reason, now=now)


def confirm_booking(booking_id):
    return BookingManager().confirm_booking(get_object_or_404(Booking, pk=booking_id))


def complete_booking(booking_id):
    return BookingManager().complete_booking(get_object_or_404(Booking, pk=booking_id))


def mark_no_show(booking_id):
    return BookingManager().mark_no_show(get_object_or_404(Booking, pk=booking_id))


def reschedule_booking(booking_id, new_start, **kwargs):
    """kwargs: therapist_id (None for any therapist); omitted keeps the current one."""
    booking = get_object_or_404(Booking, pk=booking_id)
    if "therapist_id" in kwargs:
        therapist_id = kwargs.pop("therapist_id")
        kwargs["therapist"] = (
            get_object_or_404(Therapist, pk=therapist_id) if therapist_id is not None else None
        )
    return BookingManager().reschedule_booking(booking, new_start, **kwargs)


def assign_therapist(booking_id, therapist_id):
    booking = get_object_or_404(Booking, pk=booking_id)
    therapist = get_object_or_404(Therapist, pk=therapist_id)
    return BookingManager().assign_therapist(booking, therapist)
