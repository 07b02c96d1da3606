"""Celery task bodies run in-process against the test database."""
from contextlib import contextmanager
from datetime import date
from unittest.mock import patch

from conftest import FakeGateway, RecordingDispatcher
from marketplace.models import Booking, BookingStatus, PaymentStatus
from marketplace.tasks import booking_tasks, escrow_tasks


@contextmanager
def lock_held_elsewhere(key, timeout=3300):
    yield False


@contextmanager
def lock_free(key, timeout=3300):
    yield True


class TestPaymentTasks:
    def test_capture(self, session_factory, accepted):
        with patch.object(booking_tasks, "SessionLocal", session_factory), \
                patch.object(booking_tasks, "get_payment_gateway", return_value=FakeGateway()):
            result = booking_tasks.capture_booking_payment(str(accepted.payment.id))

        assert result["status"] == PaymentStatus.PAID.value

    def test_unknown_payment(self, session_factory):
        with patch.object(booking_tasks, "SessionLocal", session_factory), \
                patch.object(booking_tasks, "get_payment_gateway", return_value=FakeGateway()):
            result = booking_tasks.refund_booking_payment("00000000-0000-0000-0000-000000000000", "10.00")

        assert result == {"status": "failed", "reason": "payment_not_found"}


class TestBatchTasks:
    def test_skipped_while_another_run_holds_the_lock(self):
        with patch.object(escrow_tasks, "batch_lock", lock_held_elsewhere):
            assert escrow_tasks.release_due_escrow() == {"status": "skipped"}

    def test_auto_complete_finishes_past_bookings(self, db, session_factory, accepted):
        accepted.booking_date = date(2020, 1, 7)
        db.commit()

        with patch.object(booking_tasks, "batch_lock", lock_free), \
                patch.object(booking_tasks, "SessionLocal", session_factory), \
                patch.object(booking_tasks, "CeleryEffectDispatcher", RecordingDispatcher):
            result = booking_tasks.auto_complete_bookings()

        assert result == {"status": "success", "completed": 1}
        db.expire_all()
        assert db.query(Booking).one().status == BookingStatus.COMPLETED.value
