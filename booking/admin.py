from django.contrib import admin
from .models import (
    AvailabilityRule,
    Booking,
    Client,
    Payment,
    PriceHistory,
    Service,
    ServiceOption,
    SlotLock,
    Therapist,
)


class ServiceOptionInline(admin.TabularInline):
    model = ServiceOption
    extra = 0


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name",)
    inlines = [ServiceOptionInline]


@admin.register(ServiceOption)
class ServiceOptionAdmin(admin.ModelAdmin):
    list_display = ("id", "service", "option_name", "duration_minutes", "price", "is_active")
    list_select_related = ("service",)
    list_filter = ("is_active", "service")
    # Price edits belong in the API so they are logged to PriceHistory.
    readonly_fields = ("price",)

    def get_readonly_fields(self, request, obj=None):
        return self.readonly_fields if obj else ()


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ("id", "first_name", "last_name", "email", "phone")
    search_fields = ("first_name", "last_name", "email")


@admin.register(Therapist)
class TherapistAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "email")


@admin.register(AvailabilityRule)
class AvailabilityRuleAdmin(admin.ModelAdmin):
    list_display = ("service_option", "therapist", "day_of_week", "specific_date", "start_time", "booking_limit", "is_active")
    list_select_related = ("service_option__service", "therapist")
    list_filter = ("is_active", "day_of_week", "service_option__service")


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("amount", "status", "provider_reference", "paid_at", "refund_amount", "refunded_at")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "client", "service_option", "therapist", "booking_start_time", "status", "payment_status")
    list_select_related = ("client", "service_option__service", "therapist")
    list_filter = ("status", "payment_status", "service_option__service")
    search_fields = ("client__last_name", "client__email", "service_option__service__name")
    # Status and timing change only through BookingManager (API).
    readonly_fields = ("price_at_booking", "status", "booking_start_time", "booking_end_time", "cancellation_time")
    inlines = [PaymentInline]


@admin.register(PriceHistory)
class PriceHistoryAdmin(admin.ModelAdmin):
    list_display = ("service_option", "old_price", "new_price", "changed_at")
    list_select_related = ("service_option__service",)
    list_filter = ("service_option__service",)


@admin.register(SlotLock)
class SlotLockAdmin(admin.ModelAdmin):
    list_display = ("slot_key", "created_at")
    search_fields = ("slot_key",)
