# reports/views.py

from django.utils import timezone
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import BasePermission

from booking.services.schedule_composer import ScheduleComposer
from booking.views import parse_day


class IsStaffOnly(BasePermission):
    """
    Only allow requests from logged-in staff users.
    """
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_staff)


class ScheduleOverviewView(APIView):
    """
    GET /api/reports/overview/?date=YYYY-MM-DD

    Every active therapist's day plus:
    - total_therapists, active_therapists (with working hours that day)
    - total_bookings
    - average_utilization (0 when there are no therapists)

    Only accessible by staff users. Missing date means today.
    """
    permission_classes = [IsStaffOnly]

    def get(self, request):
        raw = request.query_params.get("date")
        day = parse_day(raw) if raw else timezone.localdate()
        if day is None:
            return Response({"detail": "Invalid date format. Use YYYY-MM-DD."}, status=400)
        return Response(ScheduleComposer().get_schedule_overview(day).as_dict())
