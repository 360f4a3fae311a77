# staff/views.py
#
# Purpose:
# - Staff-only management of therapist schedules (working hours, time off,
#   date overrides, closed days).
# - Daily and weekly schedule views per therapist.
# - Bookable start times for a given duration, and weekly stats.
#
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.generics import get_object_or_404
from rest_framework.permissions import BasePermission
from rest_framework.response import Response
from rest_framework.views import APIView

from booking.models import Therapist
from booking.services.schedule_composer import ScheduleComposer
from booking.services.slot_aggregator import SlotAggregator
from booking.views import parse_day, parse_id
from .models import Schedule
from .serializers import ScheduleSerializer


MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
DEFAULT_DURATION_MINUTES = 60


class IsStaffOnly(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_staff)


class ScheduleViewSet(viewsets.ModelViewSet):
    serializer_class = ScheduleSerializer
    permission_classes = [IsStaffOnly]

    def get_queryset(self):
        qs = Schedule.objects.select_related("therapist").order_by("therapist_id", "start_time", "id")
        raw_therapist = self.request.query_params.get("therapist")
        if raw_therapist:
            qs = qs.filter(therapist_id=parse_id(raw_therapist) or 0)
        return qs


def _day_param(request, name):
    """Query parameter as a date; missing means today (clinic time)."""
    raw = request.query_params.get(name)
    if not raw:
        return timezone.localdate()
    return parse_day(raw)


class TherapistDailyScheduleView(APIView):
    """GET /api/staff/therapists/{id}/daily/?date=YYYY-MM-DD"""
    permission_classes = [IsStaffOnly]

    def get(self, request, therapist_id):
        therapist = get_object_or_404(Therapist, pk=therapist_id)
        day = _day_param(request, "date")
        if day is None:
            return Response({"detail": "Invalid date format. Use YYYY-MM-DD."}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ScheduleComposer().get_daily_schedule(therapist, day).as_dict())


class TherapistWeeklyScheduleView(APIView):
    """GET /api/staff/therapists/{id}/weekly/?start=YYYY-MM-DD (seven days from start)"""
    permission_classes = [IsStaffOnly]

    def get(self, request, therapist_id):
        therapist = get_object_or_404(Therapist, pk=therapist_id)
        start = _day_param(request, "start")
        if start is None:
            return Response({"detail": "Invalid date format. Use YYYY-MM-DD."}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ScheduleComposer().get_weekly_schedule(therapist, start).as_dict())


class TherapistStartTimesView(APIView):
    """GET /api/staff/therapists/{id}/availability/?date=YYYY-MM-DD&duration=60"""
    permission_classes = [IsStaffOnly]

    def get(self, request, therapist_id):
        therapist = get_object_or_404(Therapist, pk=therapist_id)
        day = _day_param(request, "date")
        if day is None:
            return Response({"detail": "Invalid date format. Use YYYY-MM-DD."}, status=status.HTTP_400_BAD_REQUEST)

        raw_duration = request.query_params.get("duration")
        duration = parse_id(raw_duration) if raw_duration else DEFAULT_DURATION_MINUTES
        if duration is None or not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
            return Response(
                {"detail": f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        starts = SlotAggregator().get_start_times(therapist, day, duration)
        return Response({
            "therapist_id": therapist.pk,
            "date": day.isoformat(),
            "duration": duration,
            "available_slots": [t.strftime("%H:%M") for t in starts],
            "total_slots": len(starts),
        })


class TherapistScheduleStatsView(APIView):
    """GET /api/staff/therapists/{id}/stats/?start=YYYY-MM-DD"""
    permission_classes = [IsStaffOnly]

    def get(self, request, therapist_id):
        therapist = get_object_or_404(Therapist, pk=therapist_id)
        start = _day_param(request, "start")
        if start is None:
            return Response({"detail": "Invalid date format. Use YYYY-MM-DD."}, status=status.HTTP_400_BAD_REQUEST)
        return Response(ScheduleComposer().get_schedule_stats(therapist, start).as_dict())
