# booking/views.py
#
# Purpose:
# - CRUD APIs for Clients, Services, Service options, Therapists and
#   Availability rules.
# - Booking API: create, cancel, confirm, complete, no-show, reschedule,
#   assign therapist, take payment, refund quote.
# - Availability endpoint backed by AvailabilityEngine.
# - Permissions:
#   * Catalog/rule writes are staff-only.
#   * Booking creation, cancellation and rescheduling need no login
#     (public flow: create client -> create booking).
#   * Confirm / complete / no-show / assign / take-payment are staff-only.
#
# Errors:
# - SchedulingError subclasses become {"detail": ...} with their http_status
#   (400 not offered, 409 full/conflict/bad transition, 402 payment).
#
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.generics import get_object_or_404
from rest_framework.permissions import BasePermission
from rest_framework.response import Response

from .exceptions import SchedulingError
from .models import AvailabilityRule, Booking, Client, Service, ServiceOption, Therapist
from .serializers import (
    AssignTherapistSerializer,
    AvailabilityRuleSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    CancelSerializer,
    ClientSerializer,
    PriceHistorySerializer,
    RescheduleSerializer,
    ServiceOptionSerializer,
    ServiceSerializer,
    TakePaymentSerializer,
    TherapistSerializer,
)
from .services.availability_engine import AvailabilityEngine
from .services.booking_manager import BookingManager
from .services.price_management import PriceManagementService
from .services.refund_policy import quote_refund

logger = logging.getLogger(__name__)


# -------------------- Permissions --------------------
class IsStaffOrReadOnly(BasePermission):
    """
    Read: anyone
    Write: staff only
    """
    def has_permission(self, request, view):
        if request.method in ("GET", "HEAD", "OPTIONS"):
            return True
        return bool(request.user and request.user.is_staff)


class IsStaffUser(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_staff)


def is_staff(request) -> bool:
    user = getattr(request, "user", None)
    return bool(user and user.is_authenticated and user.is_staff)


def rejected(exc: SchedulingError) -> Response:
    logger.info("Rejected: %s (%s)", exc.message, type(exc).__name__)
    return Response(
        {"detail": exc.message, "code": type(exc).__name__},
        status=exc.http_status,
    )


def parse_day(raw):
    """'YYYY-MM-DD' (anything after a 'T' or space is ignored) -> date or None."""
    raw = (raw or "").strip()
    for sep in ("T", " "):
        if sep in raw:
            raw = raw.split(sep, 1)[0]
    if not raw:
        return None
    try:
        return parse_date(raw)
    except ValueError:
        # well formed but impossible, e.g. 2030-13-45
        return None


def parse_id(raw):
    """Positive integer primary key from a query parameter, or None."""
    raw = str(raw or "").strip()
    return int(raw) if raw.isascii() and raw.isdigit() and int(raw) > 0 else None


# -------------------- ViewSets --------------------
class ClientViewSet(viewsets.ModelViewSet):
    queryset = Client.objects.all().order_by("id")
    serializer_class = ClientSerializer

    def create(self, request, *args, **kwargs):
        """
        Create-or-reuse a Client, matched by email (case-insensitive).
        - Existing client: 200 with the stored record.
        - New client: 201.
        """
        email = (request.data.get("email") or "").strip()
        existing = Client.objects.filter(email__iexact=email).first() if email else None
        if existing:
            return Response(self.get_serializer(existing).data, status=status.HTTP_200_OK)

        data = {
            "first_name": (request.data.get("first_name") or "").strip(),
            "last_name": (request.data.get("last_name") or "").strip(),
            "email": email,
            "phone": (request.data.get("phone") or "").strip(),
        }
        serializer = self.get_serializer(data=data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        headers = self.get_success_headers(serializer.data)
        return Response(serializer.data, status=status.HTTP_201_CREATED, headers=headers)


class ServiceViewSet(viewsets.ModelViewSet):
    """
    Service catalog:
    - Anyone can list active services; staff see all.
    - Only staff can create/update/delete services.
    """
    serializer_class = ServiceSerializer
    permission_classes = [IsStaffOrReadOnly]

    def get_queryset(self):
        qs = Service.objects.prefetch_related("options").order_by("id")
        if is_staff(self.request):
            return qs
        return qs.filter(is_active=True)


class ServiceOptionViewSet(viewsets.ModelViewSet):
    """
    Price updates go through PriceManagementService so each change is
    validated and written to PriceHistory. Existing bookings keep their
    price_at_booking.
    """
    serializer_class = ServiceOptionSerializer
    permission_classes = [IsStaffOrReadOnly]

    def get_queryset(self):
        qs = ServiceOption.objects.select_related("service").order_by("service_id", "id")
        raw_service = self.request.query_params.get("service")
        if raw_service:
            qs = qs.filter(service_id=parse_id(raw_service) or 0)
        if is_staff(self.request):
            return qs
        return qs.filter(is_active=True, service__is_active=True)

    def perform_update(self, serializer):
        new_price = serializer.validated_data.pop("price", None)
        instance = serializer.save()
        if new_price is not None:
            PriceManagementService.update_option_price(instance, new_price, changed_by=self.request.user)

    @action(detail=True, methods=["get"], url_path="price-history")
    def price_history(self, request, pk=None):
        option = self.get_object()
        changes = option.price_changes.order_by("-changed_at", "-id")
        return Response(PriceHistorySerializer(changes, many=True).data)

    @action(detail=True, methods=["get"], url_path="price-preview", permission_classes=[IsStaffUser])
    def price_preview(self, request, pk=None):
        """GET ?price=NN.NN: what a price change would look like, nothing is saved."""
        option = self.get_object()
        try:
            summary = PriceManagementService.get_price_change_summary(option, request.query_params.get("price"))
        except DjangoValidationError as e:
            return Response({"detail": e.messages}, status=status.HTTP_400_BAD_REQUEST)
        return Response(summary)


class TherapistViewSet(viewsets.ModelViewSet):
    serializer_class = TherapistSerializer
    permission_classes = [IsStaffOrReadOnly]

    def get_queryset(self):
        qs = Therapist.objects.all().order_by("name", "id")
        if is_staff(self.request):
            return qs
        return qs.filter(is_active=True)


class AvailabilityRuleViewSet(viewsets.ModelViewSet):
    queryset = AvailabilityRule.objects.select_related("service_option", "therapist").order_by(
        "service_option_id", "start_time", "id"
    )
    serializer_class = AvailabilityRuleSerializer
    permission_classes = [IsStaffOrReadOnly]


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Endpoints:
    - GET    /api/bookings/                       list (staff)
    - POST   /api/bookings/                       create
    - POST   /api/bookings/{id}/cancel/           cancel (+ refund when paid)
    - POST   /api/bookings/{id}/confirm/          staff
    - POST   /api/bookings/{id}/complete/         staff
    - POST   /api/bookings/{id}/no-show/          staff
    - POST   /api/bookings/{id}/reschedule/
    - POST   /api/bookings/{id}/assign-therapist/ staff
    - POST   /api/bookings/{id}/take-payment/     staff
    - GET    /api/bookings/{id}/refund-quote/
    - GET    /api/bookings/availability/?service=&option=&therapist=&date=
    """
    serializer_class = BookingSerializer
    manager = BookingManager()
    lookup_value_regex = r"[0-9]+"

    def get_queryset(self):
        qs = Booking.objects.select_related("client", "service_option__service", "therapist")
        params = self.request.query_params
        if params.get("therapist"):
            therapist_id = parse_id(params["therapist"])
            if therapist_id is None:
                return qs.none()
            qs = qs.filter(therapist_id=therapist_id)
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        day = parse_day(params.get("date"))
        if day is not None:
            qs = qs.filter(booking_start_time__date=day)
        return qs.order_by("-booking_start_time")

    def get_permissions(self):
        if self.action == "list":
            return [IsStaffUser()]
        return super().get_permissions()

    def create(self, request, *args, **kwargs):
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            booking = self.manager.create_booking(
                service_option=data["service_option"],
                therapist=data.get("therapist"),
                start_time=data["booking_start_time"],
                client=data["client"],
                payment_method=data.get("payment_method", ""),
                payment_reference=data.get("payment_reference") or None,
                client_notes=data.get("client_notes", ""),
            )
        except SchedulingError as e:
            return rejected(e)

        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        """Cancel a booking. Non-staff callers always cancel as the client."""
        booking = get_object_or_404(Booking, pk=pk)
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        initiator = serializer.validated_data.get("initiator") or "staff"
        if not is_staff(request):
            initiator = "client"

        try:
            result = self.manager.cancel_booking(
                booking, initiator=initiator, reason=serializer.validated_data["reason"]
            )
        except SchedulingError as e:
            return rejected(e)
        return Response(result.as_dict(), status=status.HTTP_200_OK)

    def _transition(self, pk, operation):
        booking = get_object_or_404(Booking, pk=pk)
        try:
            booking = operation(booking)
        except SchedulingError as e:
            return rejected(e)
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"], permission_classes=[IsStaffUser])
    def confirm(self, request, pk=None):
        return self._transition(pk, self.manager.confirm_booking)

    @action(detail=True, methods=["post"], permission_classes=[IsStaffUser])
    def complete(self, request, pk=None):
        return self._transition(pk, self.manager.complete_booking)

    @action(detail=True, methods=["post"], url_path="no-show", permission_classes=[IsStaffUser])
    def no_show(self, request, pk=None):
        return self._transition(pk, self.manager.mark_no_show)

    @action(detail=True, methods=["post"])
    def reschedule(self, request, pk=None):
        booking = get_object_or_404(Booking, pk=pk)
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kwargs = {}
        if "therapist" in data:
            kwargs["therapist"] = data["therapist"]
        try:
            booking = self.manager.reschedule_booking(booking, data["booking_start_time"], **kwargs)
        except SchedulingError as e:
            return rejected(e)
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"], url_path="assign-therapist", permission_classes=[IsStaffUser])
    def assign_therapist(self, request, pk=None):
        booking = get_object_or_404(Booking, pk=pk)
        serializer = AssignTherapistSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            booking = self.manager.assign_therapist(booking, serializer.validated_data["therapist"])
        except SchedulingError as e:
            return rejected(e)
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"], url_path="take-payment", permission_classes=[IsStaffUser])
    def take_payment(self, request, pk=None):
        booking = get_object_or_404(Booking, pk=pk)
        serializer = TakePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            booking = self.manager.take_payment(booking, method=serializer.validated_data["payment_method"])
        except SchedulingError as e:
            return rejected(e)
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["get"], url_path="refund-quote")
    def refund_quote(self, request, pk=None):
        """What a cancellation right now would refund. Unpaid bookings refund nothing."""
        booking = get_object_or_404(Booking, pk=pk)
        quote = quote_refund(booking.price_at_booking, booking.booking_start_time)
        data = quote.as_dict()
        data["eligible"] = booking.payment_status == Booking.PAYMENT_PAID and not booking.is_cancelled
        if not data["eligible"]:
            data["amount"] = "0.00"
            data["amount_cents"] = 0
        data["booking_id"] = booking.pk
        data["payment_status"] = booking.payment_status
        return Response(data)

    @action(detail=False, methods=["get"], url_path="availability")
    def availability(self, request):
        """
        GET /api/bookings/availability/?service=ID&option=ID&therapist=ID&date=YYYY-MM-DD
        therapist is optional (omitted = any therapist).
        Past slots are dropped when the date is today.
        """
        params = request.query_params
        raw_therapist = (params.get("therapist") or "").strip()

        if not params.get("service") or not params.get("option") or not params.get("date"):
            return Response(
                {"detail": "Missing 'service', 'option' or 'date'."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        service_id = parse_id(params.get("service"))
        option_id = parse_id(params.get("option"))
        therapist_id = parse_id(raw_therapist) if raw_therapist else None
        if service_id is None or option_id is None or (raw_therapist and therapist_id is None):
            return Response(
                {"detail": "'service', 'option' and 'therapist' must be numeric ids."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        d = parse_day(params.get("date"))
        if d is None:
            return Response(
                {"detail": "Invalid date format. Use YYYY-MM-DD."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        service = get_object_or_404(Service, pk=service_id)
        option = get_object_or_404(ServiceOption.objects.select_related("service"), pk=option_id)
        if option.service_id != service.pk:
            return Response(
                {"detail": "Service option does not belong to the selected service."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        therapist = get_object_or_404(Therapist, pk=therapist_id) if therapist_id else None

        slots = AvailabilityEngine().get_available_slots(option, therapist, d)

        now = timezone.localtime()
        if d == now.date():
            slots = [s for s in slots if s.start_time > now.time()]

        return Response({
            "date": d.isoformat(),
            "service": service.pk,
            "option": option.pk,
            "therapist": therapist.pk if therapist else None,
            "slots": [s.as_dict() for s in slots],
        })
