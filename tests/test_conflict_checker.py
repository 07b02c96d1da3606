"""Tests for overlap detection and the active-booking unique index."""
from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import TUESDAY, book
from marketplace.models import Booking, BookingStatus
from marketplace.services.booking.conflict_checker import ConflictChecker


class TestOverlaps:
    def test_touching_edges_do_not_overlap(self):
        assert not ConflictChecker.overlaps(time(10), time(11), time(11), time(12))
        assert not ConflictChecker.overlaps(time(11), time(12), time(10), time(11))

    def test_partial_and_contained_overlap(self):
        assert ConflictChecker.overlaps(time(10), time(11), time(10, 30), time(11, 30))
        assert ConflictChecker.overlaps(time(9), time(13), time(10), time(11))


class TestHasConflict:
    def test_counts_active_bookings(self, db, provider, customer, service, booking_service):
        book(booking_service, customer, service, at=time(10, 0))

        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(10, 30), time(11, 30)) == 1
        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(11, 0), time(12, 0)) == 0

    def test_cancelled_bookings_never_conflict(self, db, provider, customer, service, booking_service):
        booking = book(booking_service, customer, service, at=time(10, 0))
        booking.status = BookingStatus.CANCELLED.value
        db.commit()

        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(10, 0), time(11, 0)) == 0

    def test_exclude_booking_id(self, db, provider, customer, service, booking_service):
        booking = book(booking_service, customer, service, at=time(10, 0))

        assert ConflictChecker.has_conflict(
            db, provider.id, TUESDAY, time(10, 0), time(11, 0), exclude_booking_id=booking.id
        ) == 0

    def test_buffer_widens_the_window(self, db, provider, customer, service, booking_service):
        book(booking_service, customer, service, at=time(10, 0))

        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(11, 0), time(12, 0)) == 0
        assert ConflictChecker.has_conflict(
            db, provider.id, TUESDAY, time(11, 0), time(12, 0), buffer_minutes=10
        ) == 1
        assert ConflictChecker.has_conflict(
            db, provider.id, TUESDAY, time(11, 10), time(12, 0), buffer_minutes=10
        ) == 0

    def test_existing_booking_buffer_applies(self, db, provider, customer, service, booking_service):
        service.buffer_minutes = 30
        db.commit()
        book(booking_service, customer, service, at=time(10, 0))

        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(11, 15), time(12, 0)) == 1
        assert ConflictChecker.has_conflict(db, provider.id, TUESDAY, time(11, 30), time(12, 0)) == 0

    def test_buffer_is_clamped_to_the_day(self, db, provider, customer, service, booking_service):
        book(booking_service, customer, service, at=time(10, 0))

        assert ConflictChecker.has_conflict(
            db, provider.id, TUESDAY, time(0, 0), time(0, 30), buffer_minutes=120
        ) == 0
        assert ConflictChecker.has_conflict(
            db, provider.id, TUESDAY, time(22, 0), time(23, 30), buffer_minutes=720
        ) == 1


class TestActiveBookingIndex:
    def _row(self, service, customer, status):
        return Booking(
            service_id=service.id,
            customer_id=customer.id,
            provider_id=service.provider_id,
            booking_date=TUESDAY,
            start_time=time(10, 0),
            end_time=time(11, 0),
            duration_minutes=60,
            price=Decimal("100"),
            total_amount=Decimal("100"),
            status=status,
        )

    def test_two_active_bookings_cannot_share_a_start(self, db, customer, service):
        db.add(self._row(service, customer, "pending"))
        db.commit()

        db.add(self._row(service, customer, "accepted"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_cancelled_rows_do_not_block(self, db, customer, service):
        db.add(self._row(service, customer, "cancelled"))
        db.add(self._row(service, customer, "declined"))
        db.add(self._row(service, customer, "pending"))
        db.commit()

        assert db.query(Booking).count() == 3
