# staff/models.py
from django.db import models

from booking.exceptions import InvalidRuleConfiguration
from booking.models import DaySelectorModel


class Schedule(DaySelectorModel):
    """
    Working hours or time off for a therapist, recurring on a weekday or
    pinned to one date. Points to booking.Therapist to avoid two therapist
    models.

    - Specific-date rows replace the weekday rows of the same type for that day.
    - A specific-date WorkingHours row with start_time == end_time marks the
      therapist as closed that day.
    - effective_from / effective_to bound recurring rows.
    - end_time earlier than start_time means the block runs past midnight.
    """
    WORKING_HOURS = "WorkingHours"
    TIME_OFF = "TimeOff"
    TYPE_CHOICES = [
        (WORKING_HOURS, "Working hours"),
        (TIME_OFF, "Time off"),
    ]

    therapist = models.ForeignKey(
        "booking.Therapist",
        on_delete=models.CASCADE,
        related_name="schedules",
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=WORKING_HOURS)
    start_time = models.TimeField()
    end_time = models.TimeField()
    effective_from = models.DateField(null=True, blank=True)
    effective_to = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["therapist_id", "start_time"]
        indexes = [
            models.Index(fields=["therapist", "day_of_week", "is_active"]),
            models.Index(fields=["therapist", "specific_date", "is_active"]),
        ]

    def __str__(self):
        when = self.specific_date.isoformat() if self.specific_date else f"weekday {self.day_of_week}"
        return f"{self.therapist.name}: {self.type} {when} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    @property
    def marks_closed(self) -> bool:
        return (
            self.type == self.WORKING_HOURS
            and self.specific_date is not None
            and self.start_time == self.end_time
        )

    def validate_selector(self):
        super().validate_selector()
        if self.effective_from and self.effective_to and self.effective_from > self.effective_to:
            raise InvalidRuleConfiguration("effective_to must be on or after effective_from.")
        if self.start_time == self.end_time and not (
            self.type == self.WORKING_HOURS and self.specific_date is not None
        ):
            raise InvalidRuleConfiguration("start_time and end_time must differ.")

    def is_effective_on(self, on_date) -> bool:
        if self.effective_from and on_date < self.effective_from:
            return False
        if self.effective_to and on_date > self.effective_to:
            return False
        return True
