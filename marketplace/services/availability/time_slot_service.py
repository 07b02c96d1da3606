# ===== marketplace/services/availability/time_slot_service.py =====
"""
Time slot generation and bookkeeping.

Slots are a regenerable cache over availability windows: generation only ever
adds missing rows, and the unique (provider, date, start_time) constraint
absorbs concurrent generators.
"""
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.config.settings import get_settings
from marketplace.core.exceptions import ConflictError, ValidationError
from marketplace.models.availability import AvailabilityWindow, TimeSlot
from marketplace.models.booking import Booking, ACTIVE_STATUSES
from marketplace.services.availability.availability_service import AvailabilityService
from marketplace.utils.time_utils import combine_utc, date_range, day_of_week, ensure_utc, utcnow
import logging

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = [s.value for s in ACTIVE_STATUSES]


class TimeSlotGenerator:
    """Expands availability windows into fixed-duration slots"""

    @staticmethod
    def validate_request(start_date: date, end_date: date, duration_minutes: int) -> None:
        settings = get_settings()

        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("Slot duration must be a positive number of minutes")
        if not settings.SLOT_MIN_DURATION_MINUTES <= duration_minutes <= settings.SLOT_MAX_DURATION_MINUTES:
            raise ValidationError(
                f"Slot duration must be between {settings.SLOT_MIN_DURATION_MINUTES} "
                f"and {settings.SLOT_MAX_DURATION_MINUTES} minutes"
            )
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        if (end_date - start_date).days > settings.MAX_SLOT_RANGE_DAYS:
            raise ValidationError(f"Date range cannot exceed {settings.MAX_SLOT_RANGE_DAYS} days")

    @staticmethod
    def plan_slots(
            windows: List[AvailabilityWindow],
            start_date: date,
            end_date: date,
            duration_minutes: int,
            existing: Set[Tuple[date, time]],
            now: datetime
    ) -> List[Tuple[AvailabilityWindow, date, time, time]]:
        """Candidate (window, date, start, end) tuples that do not exist yet and start in the future"""
        by_day: Dict[int, List[AvailabilityWindow]] = {}
        for window in windows:
            by_day.setdefault(window.day_of_week, []).append(window)

        step = timedelta(minutes=duration_minutes)
        planned = []
        seen = set(existing)

        for current_date in date_range(start_date, end_date):
            for window in by_day.get(day_of_week(current_date), []):
                current_slot = datetime.combine(current_date, window.start_time)
                window_end = datetime.combine(current_date, window.end_time)

                while current_slot + step <= window_end:
                    slot_end = current_slot + step
                    key = (current_date, current_slot.time())

                    if key not in seen and combine_utc(current_date, current_slot.time()) > now:
                        planned.append((window, current_date, current_slot.time(), slot_end.time()))
                        seen.add(key)

                    current_slot = slot_end

        return planned

    @staticmethod
    def generate(
            db: Session,
            provider_id: UUID,
            start_date: date,
            end_date: date,
            duration_minutes: int,
            service_id: Optional[UUID] = None,
            now: Optional[datetime] = None
    ) -> List[TimeSlot]:
        """Create the missing slots for ``[start_date, end_date]``; returns only the new rows"""
        TimeSlotGenerator.validate_request(start_date, end_date, duration_minutes)
        now = ensure_utc(now) or utcnow()

        windows = AvailabilityService.get_active_windows(db, provider_id)
        if not windows:
            logger.info(f"No active availability for provider {provider_id}, nothing to generate")
            return []

        # One retry: a concurrent generator may insert the same keys between our scan and commit
        for attempt in range(2):
            existing = {
                (row.date, row.start_time)
                for row in db.query(TimeSlot.date, TimeSlot.start_time).filter(
                    TimeSlot.provider_id == provider_id,
                    TimeSlot.date.between(start_date, end_date)
                ).all()
            }

            planned = TimeSlotGenerator.plan_slots(
                windows, start_date, end_date, duration_minutes, existing, now
            )
            slots = [
                TimeSlot(
                    provider_id=provider_id,
                    service_id=service_id,
                    availability_id=window.id,
                    date=slot_date,
                    start_time=slot_start,
                    end_time=slot_end,
                    is_booked=False,
                )
                for window, slot_date, slot_start, slot_end in planned
            ]
            db.add_all(slots)

            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(f"Concurrent slot generation for provider {provider_id}, rescanning")
                continue

            logger.info(
                f"Generated {len(slots)} slots for provider {provider_id} "
                f"({start_date} to {end_date}, {duration_minutes} min)"
            )
            return slots

        raise ConflictError("Slot generation kept colliding with a concurrent run, try again")

    @staticmethod
    def get_available_slots(
            db: Session,
            provider_id: UUID,
            slot_date: date,
            service_id: Optional[UUID] = None,
            now: Optional[datetime] = None
    ) -> List[TimeSlot]:
        """Unbooked slots on a date that have not started yet"""
        now = ensure_utc(now) or utcnow()

        query = db.query(TimeSlot).filter(
            TimeSlot.provider_id == provider_id,
            TimeSlot.date == slot_date,
            TimeSlot.is_booked == False  # noqa: E712
        )
        if service_id:
            query = query.filter((TimeSlot.service_id == service_id) | (TimeSlot.service_id.is_(None)))

        slots = query.order_by(TimeSlot.start_time).all()
        return [s for s in slots if combine_utc(s.date, s.start_time) > now]

    @staticmethod
    def get_weekly_schedule(db: Session, provider_id: UUID, week_start: date) -> "OrderedDict[date, List[TimeSlot]]":
        """All slots of the seven days starting at ``week_start``, grouped by date"""
        week_end = week_start + timedelta(days=6)
        slots = db.query(TimeSlot).filter(
            TimeSlot.provider_id == provider_id,
            TimeSlot.date.between(week_start, week_end)
        ).order_by(TimeSlot.date, TimeSlot.start_time).all()

        schedule = OrderedDict((day, []) for day in date_range(week_start, week_end))
        for slot in slots:
            schedule[slot.date].append(slot)
        return schedule

    @staticmethod
    def book_slots(db: Session, booking: Booking) -> int:
        """Mark free slots overlapping the booking window as taken (no commit)"""
        slots = db.query(TimeSlot).filter(
            TimeSlot.provider_id == booking.provider_id,
            TimeSlot.date == booking.booking_date,
            TimeSlot.start_time < booking.end_time,
            TimeSlot.end_time > booking.start_time,
            TimeSlot.is_booked == False  # noqa: E712
        ).all()

        for slot in slots:
            slot.is_booked = True
            slot.booking_id = booking.id
        return len(slots)

    @staticmethod
    def release_slots(db: Session, booking: Booking) -> int:
        """
        Free the slots held by a booking leaving the active states (no commit).

        A slot that still overlaps another active booking is handed over to
        that booking instead of being freed.
        """
        slots = db.query(TimeSlot).filter(TimeSlot.booking_id == booking.id).all()

        for slot in slots:
            other = db.query(Booking).filter(
                Booking.provider_id == slot.provider_id,
                Booking.booking_date == slot.date,
                Booking.id != booking.id,
                Booking.status.in_(_ACTIVE_STATUS_VALUES),
                Booking.start_time < slot.end_time,
                Booking.end_time > slot.start_time,
            ).first()

            if other:
                slot.booking_id = other.id
            else:
                slot.is_booked = False
                slot.booking_id = None

        return len(slots)
