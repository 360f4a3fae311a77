"""
seed_clinic.py
--------------
Seeds (creates or updates) a demo clinic: services with options, therapists,
weekday working hours and availability rules. Safe to run repeatedly; rows
are upserted by natural key.

Usage:
    python manage.py seed_clinic
    python manage.py seed_clinic --limit 2     # bookings per slot
"""

from datetime import time
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from booking.models import AvailabilityRule, Service, ServiceOption, Therapist
from staff.models import Schedule


CATALOG = [
    {
        "name": "Massage Therapy",
        "description": "Registered massage therapy",
        "options": [("30 min", 30, Decimal("65.00")), ("60 min", 60, Decimal("110.00")), ("90 min", 90, Decimal("150.00"))],
    },
    {
        "name": "Physiotherapy",
        "description": "Assessment and treatment",
        "options": [("Initial assessment", 60, Decimal("120.00")), ("Follow-up", 30, Decimal("85.00"))],
    },
    {
        "name": "Facial",
        "description": "Spa facial treatments",
        "options": [("Express", 30, Decimal("55.00")), ("Signature", 60, Decimal("95.00"))],
    },
]

THERAPISTS = [
    {"name": "Alex Morgan", "email": "alex.morgan@clinic.local", "specialties": "Massage Therapy"},
    {"name": "Sam Patel", "email": "sam.patel@clinic.local", "specialties": "Physiotherapy, Massage Therapy"},
    {"name": "Jordan Lee", "email": "jordan.lee@clinic.local", "specialties": "Facial"},
]

# Monday..Friday in 0=Sunday numbering
WEEKDAYS = [1, 2, 3, 4, 5]
OPEN, CLOSE = time(9, 0), time(17, 0)
SLOT_STARTS = [time(h, 0) for h in range(9, 17)]


class Command(BaseCommand):
    help = "Seed or update a demo clinic (services, therapists, schedules, availability rules)."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=1, help="booking_limit for seeded rules.")

    @transaction.atomic
    def handle(self, *args, **options):
        limit = max(options["limit"], 1)
        created = {"service": 0, "option": 0, "therapist": 0, "schedule": 0, "rule": 0}

        therapists = {}
        for item in THERAPISTS:
            therapist, is_created = Therapist.objects.update_or_create(
                email=item["email"],
                defaults={"name": item["name"], "specialties": item["specialties"], "is_active": True},
            )
            therapists[item["name"]] = therapist
            created["therapist"] += is_created

            for day in WEEKDAYS:
                _, is_created = Schedule.objects.get_or_create(
                    therapist=therapist,
                    type=Schedule.WORKING_HOURS,
                    day_of_week=day,
                    specific_date=None,
                    defaults={"start_time": OPEN, "end_time": CLOSE},
                )
                created["schedule"] += is_created

        for item in CATALOG:
            service, is_created = Service.objects.update_or_create(
                name=item["name"],
                defaults={"description": item["description"], "is_active": True},
            )
            created["service"] += is_created

            qualified = [t for t in therapists.values() if item["name"] in t.specialties]

            for option_name, duration, price in item["options"]:
                option, is_created = ServiceOption.objects.get_or_create(
                    service=service,
                    option_name=option_name,
                    defaults={"duration_minutes": duration, "price": price},
                )
                created["option"] += is_created

                for therapist in qualified:
                    for day in WEEKDAYS:
                        for start in SLOT_STARTS:
                            _, is_created = AvailabilityRule.objects.update_or_create(
                                service_option=option,
                                therapist=therapist,
                                day_of_week=day,
                                specific_date=None,
                                start_time=start,
                                defaults={"booking_limit": limit, "is_active": True},
                            )
                            created["rule"] += is_created

        summary = ", ".join(f"{k}s={v}" for k, v in created.items())
        self.stdout.write(self.style.SUCCESS(f"Seed complete. Created: {summary}"))
