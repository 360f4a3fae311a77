from django.contrib import admin
from notifications.models import Notification

@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('client', 'booking', 'kind', 'sent', 'created_at')
    list_filter = ('kind', 'sent', 'created_at')
    search_fields = ('client__email', 'client__last_name', 'message')
