from rest_framework import serializers

from booking.serializers import DaySelectorValidationMixin
from .models import Schedule


class ScheduleSerializer(DaySelectorValidationMixin, serializers.ModelSerializer):
    class Meta:
        model = Schedule
        fields = [
            "id",
            "therapist",
            "type",
            "day_of_week",
            "specific_date",
            "start_time",
            "end_time",
            "effective_from",
            "effective_to",
            "is_active",
            "notes",
        ]
