# notifications/models.py
#
# Purpose:
# - Record messages sent to clients about their bookings.
#
# Design:
# - FK to booking.Client; booking is kept when known.
# - 'sent' records whether the delivery attempt succeeded.
#
from django.db import models

from booking.models import Booking, Client


class Notification(models.Model):
    KIND_CHOICES = [
        ("received", "Booking received"),
        ("confirmed", "Booking confirmed"),
        ("cancelled", "Booking cancelled"),
        ("refunded", "Refund issued"),
    ]

    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name="notifications")
    booking = models.ForeignKey(
        Booking, on_delete=models.SET_NULL, null=True, blank=True, related_name="notifications"
    )
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    subject = models.CharField(max_length=200)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)
    sent = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} notification to {self.client} at {self.created_at:%Y-%m-%d %H:%M}"
