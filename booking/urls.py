# booking/urls.py
#
# Purpose:
# - Expose the booking app's REST API via DRF's DefaultRouter.
#   Mounted under /api/ by clinic_booking/urls.py.

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    AvailabilityRuleViewSet,
    BookingViewSet,
    ClientViewSet,
    ServiceOptionViewSet,
    ServiceViewSet,
    TherapistViewSet,
)

router = DefaultRouter()
router.register(r"clients", ClientViewSet, basename="client")
router.register(r"services", ServiceViewSet, basename="service")
router.register(r"service-options", ServiceOptionViewSet, basename="service-option")
router.register(r"therapists", TherapistViewSet, basename="therapist")
router.register(r"availability-rules", AvailabilityRuleViewSet, basename="availability-rule")
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("", include(router.urls)),
]
