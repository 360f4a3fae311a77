"""
exceptions.py
-------------
Domain errors raised by the scheduling services.

Views translate SchedulingError subclasses into ordinary rejected responses
using `http_status`; they are never allowed to reach the client as a 500.
"""

from django.core.exceptions import ValidationError


class SchedulingError(Exception):
    """Base class for booking/scheduling rejections."""

    http_status = 400
    default_message = "The request could not be scheduled."

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class InvalidRuleConfiguration(ValidationError):
    """A rule or schedule row sets both or neither of day_of_week/specific_date."""


class SlotNotOffered(SchedulingError):
    default_message = "No availability found for the selected service and time slot."


class SlotFull(SchedulingError):
    http_status = 409
    default_message = "Sorry, this time slot is fully booked."


class TherapistOverbooked(SchedulingError):
    http_status = 409
    default_message = "Selected therapist is overbooked for this time slot."


class TransactionConflict(SchedulingError):
    """A concurrent writer won the race; the caller should retry."""

    http_status = 409
    default_message = "The slot was modified concurrently. Please try again."


class InvalidStatusTransition(SchedulingError):
    http_status = 409
    default_message = "This status change is not allowed."


class BookingAlreadyCancelled(InvalidStatusTransition):
    default_message = "Booking is already cancelled."


class PaymentVerificationFailed(SchedulingError):
    http_status = 402
    default_message = "Payment could not be verified."


class PaymentError(SchedulingError):
    """The payment gateway rejected or failed a request."""

    http_status = 502
    default_message = "Payment gateway error."


class CorruptBookingDuration(SchedulingError):
    """
    Booking whose stored duration exceeds the sanity ceiling.
    Reported on the read path (logged + flagged), not raised to callers.
    """

    default_message = "Booking duration exceeds the allowed maximum."
