# reports/urls.py

from django.urls import path
from .views import ScheduleOverviewView

urlpatterns = [
    path("overview/", ScheduleOverviewView.as_view(), name="schedule-overview"),
]
