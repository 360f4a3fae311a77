# staff/admin.py
from django.contrib import admin
from .models import Schedule

@admin.register(Schedule)
class ScheduleAdmin(admin.ModelAdmin):
    list_display = ("therapist", "type", "day_of_week", "specific_date", "start_time", "end_time", "is_active")
    list_select_related = ("therapist",)
    list_filter = ("type", "is_active", "therapist")
    search_fields = ("therapist__name", "notes")
