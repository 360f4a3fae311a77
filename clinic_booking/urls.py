# clinic_booking/urls.py
#
# Purpose:
# - Project URL router. All JSON APIs live under /api/.
#
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    # staff/ and reports/ come before the booking router so its root view
    # does not shadow them.
    path("api/staff/", include("staff.urls")),
    path("api/reports/", include("reports.urls")),
    path("api/", include("booking.urls")),
]
