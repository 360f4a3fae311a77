# booking/models.py
#
# Purpose:
# - Core domain models for clinic scheduling.
#
# Design highlights:
# - Client: found-or-created by email when a booking comes in.
# - Service / ServiceOption: an option carries the duration and the price.
#   Price changes are logged to PriceHistory; bookings keep their own
#   frozen price_at_booking.
# - Therapist: person who performs sessions.
# - AvailabilityRule: declares that a slot exists (option, therapist-or-any,
#   weekday-or-date, start time) and how many bookings it takes.
#   • exactly one of day_of_week / specific_date (checked in save())
#   • specific-date rules override weekday rules (see services/rule_resolution.py)
# - Booking: status is a state machine driven by services/booking_manager.py.
#   Cancellation is a status change, never a delete.
# - Payment: ledger of gateway interactions for a booking.
# - SlotLock: synthetic row locked with SELECT ... FOR UPDATE so the capacity
#   check and the insert for one slot are serialized.
#
# Notes for developers:
# - AvailabilityRule and Booking have no foreign key between them. They are
#   matched on (service option, therapist, date/weekday, start time).
# - day_of_week uses 0=Sunday .. 6=Saturday.
#

from dataclasses import dataclass
from datetime import date, timedelta

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .exceptions import InvalidRuleConfiguration


# -------------------------
# Day selector (weekday XOR date)
# -------------------------
@dataclass(frozen=True)
class DayOfWeek:
    day: int  # 0=Sunday .. 6=Saturday

    def matches(self, on_date: date) -> bool:
        return (on_date.weekday() + 1) % 7 == self.day


@dataclass(frozen=True)
class SpecificDate:
    day: date

    def matches(self, on_date: date) -> bool:
        return self.day == on_date


class DaySelectorModel(models.Model):
    """
    Abstract base for rows that apply either every week on a weekday or on
    one specific date. `selector` turns the two nullable columns into a
    DayOfWeek | SpecificDate value; rows with both or neither are rejected
    before they reach the database.
    """
    day_of_week = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MaxValueValidator(6)],
        help_text="0=Sunday .. 6=Saturday. Empty when specific_date is set.",
    )
    specific_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date override. Empty when day_of_week is set.",
    )

    class Meta:
        abstract = True

    @property
    def selector(self):
        if self.specific_date is not None:
            return SpecificDate(self.specific_date)
        return DayOfWeek(self.day_of_week)

    @property
    def is_override(self) -> bool:
        return self.specific_date is not None

    def validate_selector(self):
        has_day = self.day_of_week is not None
        has_date = self.specific_date is not None
        if has_day and has_date:
            raise InvalidRuleConfiguration(
                "Cannot set both day_of_week and specific_date; use specific_date for overrides."
            )
        if not has_day and not has_date:
            raise InvalidRuleConfiguration(
                "Either day_of_week or specific_date must be set."
            )
        if has_day and not 0 <= self.day_of_week <= 6:
            raise InvalidRuleConfiguration("day_of_week must be between 0 and 6.")

    def save(self, *args, **kwargs):
        self.validate_selector()
        super().save(*args, **kwargs)


# -------------------------
# Client (person who books)
# -------------------------
class Client(models.Model):
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


# -------------------------
# Service catalog
# -------------------------
class Service(models.Model):
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class ServiceOption(models.Model):
    """
    A bookable variant of a service (e.g. "60 min").

    Rules:
    - price must be > 0
    - duration_minutes must be >= 1
    """
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name="options")
    option_name = models.CharField(max_length=200, blank=True)
    duration_minutes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0.01)],
    )
    is_active = models.BooleanField(default=True)

    def __str__(self):
        label = self.option_name or f"{self.duration_minutes} min"
        return f"{self.service.name} - {label} (${self.price})"


class PriceHistory(models.Model):
    """
    Record of changes to a service option's price, for auditing/reporting.
    """
    service_option = models.ForeignKey(
        ServiceOption, on_delete=models.CASCADE, related_name="price_changes"
    )
    old_price = models.DecimalField(max_digits=10, decimal_places=2)
    new_price = models.DecimalField(max_digits=10, decimal_places=2)
    changed_at = models.DateTimeField(auto_now_add=True)


# -------------------------
# Therapist
# -------------------------
class Therapist(models.Model):
    name = models.CharField(max_length=200)
    email = models.EmailField(unique=True)
    specialties = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name


# -------------------------
# Availability rule (slot declaration)
# -------------------------
class AvailabilityRule(DaySelectorModel):
    """
    Declares a bookable slot and its capacity.
    therapist=None means "any therapist offering this service"; such rules
    only contribute to pooled (any-therapist) capacity.
    """
    service_option = models.ForeignKey(
        ServiceOption, on_delete=models.CASCADE, related_name="availability_rules"
    )
    therapist = models.ForeignKey(
        Therapist,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="availability_rules",
    )
    start_time = models.TimeField()
    booking_limit = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
        help_text="Maximum number of bookings allowed for this slot.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["start_time", "id"]
        indexes = [
            models.Index(fields=["service_option", "day_of_week", "start_time"]),
            models.Index(fields=["service_option", "specific_date", "start_time"]),
            models.Index(fields=["therapist", "day_of_week", "start_time"]),
            models.Index(fields=["therapist", "specific_date", "start_time"]),
        ]

    def __str__(self):
        who = self.therapist.name if self.therapist_id else "any therapist"
        return f"{self.service_option} @ {self.start_time:%H:%M} ({who}, limit {self.booking_limit})"

    def save(self, *args, **kwargs):
        if self.booking_limit is None or self.booking_limit < 1:
            raise InvalidRuleConfiguration("booking_limit must be at least 1.")
        super().save(*args, **kwargs)


# -------------------------
# Booking record
# -------------------------
class Booking(models.Model):
    """
    Appointment booking.

    - booking_end_time = booking_start_time + option duration, set at creation
      and only changed by a reschedule through BookingManager.
    - price_at_booking is copied from the option at creation and never
      recomputed.
    """
    PENDING = "Pending Confirmation"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED_BY_CLIENT = "Cancelled By Client"
    CANCELLED_BY_STAFF = "Cancelled By Staff"
    NO_SHOW = "No Show"

    STATUS_CHOICES = [
        (PENDING, "Pending Confirmation"),
        (CONFIRMED, "Confirmed"),
        (COMPLETED, "Completed"),
        (CANCELLED_BY_CLIENT, "Cancelled By Client"),
        (CANCELLED_BY_STAFF, "Cancelled By Staff"),
        (NO_SHOW, "No Show"),
    ]
    CANCELLED_STATUSES = (CANCELLED_BY_CLIENT, CANCELLED_BY_STAFF)

    PAYMENT_PENDING = "Pending"
    PAYMENT_PAID = "Paid"
    PAYMENT_FAILED = "Failed"
    PAYMENT_REFUNDED = "Refunded"
    PAYMENT_PARTIALLY_REFUNDED = "Partially Refunded"
    PAYMENT_NOT_APPLICABLE = "Not Applicable"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_REFUNDED, "Refunded"),
        (PAYMENT_PARTIALLY_REFUNDED, "Partially Refunded"),
        (PAYMENT_NOT_APPLICABLE, "Not Applicable"),
    ]

    PAYMENT_METHOD_CHOICES = [
        ("Credit Card", "Credit Card"),
        ("Insurance", "Insurance"),
        ("Cash", "Cash"),
        ("Other", "Other"),
    ]

    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name="bookings")
    service_option = models.ForeignKey(
        ServiceOption, on_delete=models.PROTECT, related_name="bookings"
    )
    therapist = models.ForeignKey(
        Therapist,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    booking_start_time = models.DateTimeField()
    booking_end_time = models.DateTimeField()
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=PENDING)
    payment_status = models.CharField(
        max_length=30, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING
    )
    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_METHOD_CHOICES, blank=True
    )
    price_at_booking = models.DecimalField(max_digits=10, decimal_places=2)
    client_notes = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)
    cancellation_reason = models.TextField(blank=True)
    cancellation_time = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["service_option", "booking_start_time"]),
            models.Index(fields=["therapist", "booking_start_time"]),
            models.Index(fields=["status"]),
        ]

    def __str__(self):
        return f"{self.client} → {self.service_option.service.name} on {self.booking_start_time}"

    @property
    def is_cancelled(self) -> bool:
        return self.status in self.CANCELLED_STATUSES

    @property
    def duration(self) -> timedelta:
        return self.booking_end_time - self.booking_start_time


# -------------------------
# Payment ledger
# -------------------------
class Payment(models.Model):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    REFUNDED = "Refunded"
    PARTIALLY_REFUNDED = "Partially Refunded"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (SUCCEEDED, "Succeeded"),
        (FAILED, "Failed"),
        (REFUNDED, "Refunded"),
        (PARTIALLY_REFUNDED, "Partially Refunded"),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="CAD")
    method = models.CharField(max_length=20, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    provider_reference = models.CharField(max_length=255, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    refund_reference = models.CharField(max_length=255, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Payment #{self.pk} for booking #{self.booking_id} ({self.status})"


# -------------------------
# Slot lock (write serialization)
# -------------------------
class SlotLock(models.Model):
    """
    One row per slot key. BookingManager locks it with select_for_update()
    before counting bookings, so two writers for the same slot never both
    see the last free place.
    """
    slot_key = models.CharField(max_length=120, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.slot_key

    @staticmethod
    def key_for(service_option_id, therapist_id, slot_date, start_time) -> str:
        who = therapist_id if therapist_id is not None else "any"
        return f"{service_option_id}:{who}:{slot_date.isoformat()}:{start_time:%H:%M}"
