import threading
from datetime import time

from django.db import connection
from django.test import TransactionTestCase

from booking.exceptions import SlotFull, TransactionConflict
from booking.models import Booking
from booking.services.booking_manager import BookingManager
from booking.services.time_windows import combine

from .factories import MONDAY, add_rule, make_client, make_option, make_therapist


class LastSlotRaceTests(TransactionTestCase):
    """Several requests race for the last place of one slot."""

    WORKERS = 6

    def setUp(self):
        if connection.vendor == "sqlite" and connection.is_in_memory_db():
            self.skipTest("threads need a file-backed SQLite test database")
        self.option = make_option()
        self.therapist = make_therapist()
        add_rule(self.option, time(9, 0), therapist=self.therapist, limit=2)
        self.clients = [make_client(f"c{i}@example.com") for i in range(self.WORKERS)]
        # one place already taken
        BookingManager().create_booking(
            self.option, self.therapist, combine(MONDAY, time(9, 0)), make_client("first@example.com")
        )

    def _race(self, therapist_for):
        start = combine(MONDAY, time(9, 0))
        barrier = threading.Barrier(self.WORKERS)
        outcomes = []
        lock = threading.Lock()

        def attempt(i):
            try:
                barrier.wait()
                BookingManager().create_booking(self.option, therapist_for(i), start, self.clients[i])
                result = "ok"
            except SlotFull:
                result = "full"
            except TransactionConflict:
                result = "conflict"
            finally:
                connection.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(self.WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return outcomes

    def test_only_one_request_gets_the_last_place(self):
        outcomes = self._race(lambda i: self.therapist)

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(len(outcomes), self.WORKERS)
        active = Booking.objects.exclude(status__in=Booking.CANCELLED_STATUSES).count()
        self.assertEqual(active, 2)

    def test_pooled_and_therapist_requests_share_the_limit(self):
        # even workers ask for the therapist, odd workers for "any"
        outcomes = self._race(lambda i: self.therapist if i % 2 == 0 else None)

        self.assertEqual(outcomes.count("ok"), 1)
        active = Booking.objects.exclude(status__in=Booking.CANCELLED_STATUSES).count()
        self.assertEqual(active, 2)
