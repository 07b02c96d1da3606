# marketplace/services/booking/conflict_checker.py
"""Overlap detection for a desired booking window."""
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.core.exceptions import ConflictError, NotFoundError
from marketplace.models.booking import Booking, ACTIVE_STATUSES
from marketplace.models.service import Service
from marketplace.models.user import User

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [s.value for s in ACTIVE_STATUSES]
_ANCHOR = date(2000, 1, 1)


def _shift(at: time, minutes: int) -> time:
    """Move a time of day by ``minutes``, clamped to the same day"""
    moved = datetime.combine(_ANCHOR, at) + timedelta(minutes=minutes)
    if moved.date() < _ANCHOR:
        return time.min
    if moved.date() > _ANCHOR:
        return time.max
    return moved.time()


class ConflictChecker:

    @staticmethod
    def overlaps(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
        """Half-open intervals: touching edges do not overlap"""
        return start_a < end_b and start_b < end_a

    @staticmethod
    def has_conflict(
            db: Session,
            provider_id: UUID,
            booking_date: date,
            start_time: time,
            end_time: time,
            exclude_booking_id: Optional[UUID] = None,
            buffer_minutes: int = 0
    ) -> int:
        """
        Number of calendar-occupying bookings overlapping the window.

        Two bookings must be at least the larger of their services' buffers apart.
        """
        query = db.query(Booking.start_time, Booking.end_time, Service.buffer_minutes).join(
            Service, Booking.service_id == Service.id
        ).filter(
            Booking.provider_id == provider_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(_ACTIVE_STATUS_VALUES),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)

        conflicts = 0
        for other_start, other_end, other_buffer in query.all():
            gap = max(buffer_minutes or 0, other_buffer or 0)
            if ConflictChecker.overlaps(_shift(start_time, -gap), _shift(end_time, gap), other_start, other_end):
                conflicts += 1
        return conflicts

    @staticmethod
    def lock_provider(db: Session, provider_id: UUID) -> User:
        """Serialize check-and-insert per provider (row lock, no-op on SQLite)"""
        provider = db.query(User).filter(User.id == provider_id).with_for_update().first()
        if not provider:
            raise NotFoundError("Provider not found", {"provider_id": str(provider_id)})
        return provider

    @staticmethod
    def ensure_available(
            db: Session,
            provider_id: UUID,
            booking_date: date,
            start_time: time,
            end_time: time,
            exclude_booking_id: Optional[UUID] = None,
            buffer_minutes: int = 0
    ) -> None:
        conflicts = ConflictChecker.has_conflict(
            db, provider_id, booking_date, start_time, end_time, exclude_booking_id, buffer_minutes
        )
        if conflicts:
            logger.info(
                f"Conflict for provider {provider_id} on {booking_date} "
                f"{start_time:%H:%M}-{end_time:%H:%M} ({conflicts} overlapping)"
            )
            raise ConflictError(
                "The provider is already booked for this time",
                {"date": booking_date.isoformat(), "start_time": start_time.strftime("%H:%M")}
            )

    @staticmethod
    def ensure_capacity(
            db: Session,
            service: Service,
            booking_date: date,
            exclude_booking_id: Optional[UUID] = None
    ) -> None:
        """Enforce the service's per-day cap on active bookings"""
        if not service.max_bookings_per_day:
            return

        query = db.query(func.count(Booking.id)).filter(
            Booking.service_id == service.id,
            Booking.booking_date == booking_date,
            Booking.status.in_(_ACTIVE_STATUS_VALUES),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)

        if (query.scalar() or 0) >= service.max_bookings_per_day:
            raise ConflictError(
                "Service is fully booked for this date",
                {"date": booking_date.isoformat(), "max_bookings_per_day": service.max_bookings_per_day}
            )
