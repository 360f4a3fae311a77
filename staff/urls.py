from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    ScheduleViewSet,
    TherapistDailyScheduleView,
    TherapistScheduleStatsView,
    TherapistStartTimesView,
    TherapistWeeklyScheduleView,
)

router = DefaultRouter()
router.register(r"schedules", ScheduleViewSet, basename="schedule")

urlpatterns = [
    path("therapists/<int:therapist_id>/daily/", TherapistDailyScheduleView.as_view(), name="therapist-daily"),
    path("therapists/<int:therapist_id>/weekly/", TherapistWeeklyScheduleView.as_view(), name="therapist-weekly"),
    path(
        "therapists/<int:therapist_id>/availability/",
        TherapistStartTimesView.as_view(),
        name="therapist-availability",
    ),
    path("therapists/<int:therapist_id>/stats/", TherapistScheduleStatsView.as_view(), name="therapist-stats"),
    path("", include(router.urls)),
]
