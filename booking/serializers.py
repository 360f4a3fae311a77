import copy

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from rest_framework import serializers

from .models import (
    AvailabilityRule,
    Booking,
    Client,
    PriceHistory,
    Service,
    ServiceOption,
    Therapist,
)
from .services.price_management import PriceManagementService


class DaySelectorValidationMixin:
    """
    Runs the model's validate_selector() on the merged instance + input, so
    both/neither day_of_week/specific_date is a 400 instead of a 500 at save().
    """

    def validate(self, attrs):
        attrs = super().validate(attrs)
        probe = copy.copy(self.instance) if self.instance is not None else self.Meta.model()
        for key, value in attrs.items():
            setattr(probe, key, value)
        try:
            probe.validate_selector()
        except DjangoValidationError as e:
            raise serializers.ValidationError({"non_field_errors": e.messages})
        return attrs


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "first_name", "last_name", "email", "phone"]


class ServiceOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ServiceOption
        fields = ["id", "service", "option_name", "duration_minutes", "price", "is_active"]

    def validate_price(self, value):
        try:
            return PriceManagementService.validate_price(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(e.messages)


class ServiceSerializer(serializers.ModelSerializer):
    options = ServiceOptionSerializer(many=True, read_only=True)

    class Meta:
        model = Service
        fields = ["id", "name", "description", "is_active", "options"]


class PriceHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = PriceHistory
        fields = ["id", "service_option", "old_price", "new_price", "changed_at"]


class TherapistSerializer(serializers.ModelSerializer):
    class Meta:
        model = Therapist
        fields = ["id", "name", "email", "specialties", "is_active"]


class AvailabilityRuleSerializer(DaySelectorValidationMixin, serializers.ModelSerializer):
    class Meta:
        model = AvailabilityRule
        fields = [
            "id",
            "service_option",
            "therapist",
            "day_of_week",
            "specific_date",
            "start_time",
            "booking_limit",
            "is_active",
        ]

    def validate_booking_limit(self, value):
        if value < 1:
            raise serializers.ValidationError("booking_limit must be at least 1.")
        return value


class BookingSerializer(serializers.ModelSerializer):
    """Read representation; writes go through BookingCreateSerializer."""

    class Meta:
        model = Booking
        fields = [
            "id",
            "client",
            "service_option",
            "therapist",
            "booking_start_time",
            "booking_end_time",
            "status",
            "payment_status",
            "payment_method",
            "price_at_booking",
            "client_notes",
            "cancellation_reason",
            "cancellation_time",
            "created_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(queryset=Client.objects.all())
    service = serializers.PrimaryKeyRelatedField(queryset=Service.objects.all(), required=False)
    service_option = serializers.PrimaryKeyRelatedField(
        queryset=ServiceOption.objects.select_related("service")
    )
    therapist = serializers.PrimaryKeyRelatedField(
        queryset=Therapist.objects.all(), allow_null=True, required=False
    )
    booking_start_time = serializers.DateTimeField()
    payment_method = serializers.ChoiceField(
        choices=Booking.PAYMENT_METHOD_CHOICES, required=False, allow_blank=True
    )
    payment_reference = serializers.CharField(required=False, allow_blank=True)
    client_notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        start_time = attrs.get("booking_start_time")
        if start_time and start_time <= timezone.now():
            raise serializers.ValidationError("Start time must be in the future.")
        service = attrs.get("service")
        option = attrs.get("service_option")
        if service is not None and option.service_id != service.pk:
            raise serializers.ValidationError("Service option does not belong to the selected service.")
        return attrs


class CancelSerializer(serializers.Serializer):
    initiator = serializers.ChoiceField(choices=["client", "staff"], required=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RescheduleSerializer(serializers.Serializer):
    booking_start_time = serializers.DateTimeField()
    therapist = serializers.PrimaryKeyRelatedField(
        queryset=Therapist.objects.all(), allow_null=True, required=False
    )

    def validate_booking_start_time(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError("Start time must be in the future.")
        return value


class AssignTherapistSerializer(serializers.Serializer):
    therapist = serializers.PrimaryKeyRelatedField(queryset=Therapist.objects.filter(is_active=True))


class TakePaymentSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=Booking.PAYMENT_METHOD_CHOICES, default="Cash")
