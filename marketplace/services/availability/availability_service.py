# ===== marketplace/services/availability/availability_service.py =====
from typing import Dict, List, Optional
from datetime import time
from uuid import UUID

from sqlalchemy.orm import Session

from marketplace.core.exceptions import ConflictError, NotFoundError, ValidationError
from marketplace.models.availability import AvailabilityWindow, TimeSlot
import logging

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class AvailabilityService:
    """Provider weekly availability windows (pure data access)"""

    @staticmethod
    def get_active_windows(db: Session, provider_id: UUID) -> List[AvailabilityWindow]:
        return db.query(AvailabilityWindow).filter(
            AvailabilityWindow.provider_id == provider_id,
            AvailabilityWindow.is_active == True  # noqa: E712
        ).order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time).all()

    @staticmethod
    def get_availability(db: Session, provider_id: UUID) -> Dict[int, List[AvailabilityWindow]]:
        """Active windows grouped by day of week (0 = Sunday)"""
        grouped: Dict[int, List[AvailabilityWindow]] = {day: [] for day in range(7)}
        for window in AvailabilityService.get_active_windows(db, provider_id):
            grouped[window.day_of_week].append(window)
        return grouped

    @staticmethod
    def set_availability(
            db: Session,
            provider_id: UUID,
            day_of_week: int,
            start_time: time,
            end_time: time,
            is_active: bool = True
    ) -> AvailabilityWindow:
        """
        Create or re-activate a window for one day of the week.

        An identical (day, start, end) window is updated in place; a window
        overlapping another active one on the same day is rejected.
        """
        if not 0 <= day_of_week <= 6:
            raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if start_time >= end_time:
            raise ValidationError("Availability start_time must be before end_time")

        if is_active:
            overlapping = db.query(AvailabilityWindow).filter(
                AvailabilityWindow.provider_id == provider_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.is_active == True,  # noqa: E712
                AvailabilityWindow.start_time < end_time,
                AvailabilityWindow.end_time > start_time,
            ).all()
            overlapping = [
                w for w in overlapping
                if not (w.start_time == start_time and w.end_time == end_time)
            ]
            if overlapping:
                raise ConflictError(
                    f"Window overlaps existing availability on {DAY_NAMES[day_of_week]}",
                    {"window_id": str(overlapping[0].id)}
                )

        window = db.query(AvailabilityWindow).filter_by(
            provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        ).first()

        if window:
            window.is_active = is_active
        else:
            window = AvailabilityWindow(
                provider_id=provider_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                is_active=is_active,
            )
            db.add(window)

        db.commit()
        db.refresh(window)

        logger.info(
            f"Availability set for provider {provider_id}: "
            f"{DAY_NAMES[day_of_week]} {start_time:%H:%M}-{end_time:%H:%M}"
        )
        return window

    @staticmethod
    def remove_availability(db: Session, provider_id: UUID, window_id: UUID) -> Optional[AvailabilityWindow]:
        """Soft-disable a window that generated slots reference, delete it otherwise"""
        window = db.query(AvailabilityWindow).filter_by(id=window_id, provider_id=provider_id).first()
        if not window:
            raise NotFoundError("Availability window not found", {"window_id": str(window_id)})

        referenced = db.query(TimeSlot.id).filter(TimeSlot.availability_id == window.id).first()
        if referenced:
            window.is_active = False
            db.commit()
            db.refresh(window)
            logger.info(f"Availability window {window_id} deactivated (referenced by slots)")
            return window

        db.delete(window)
        db.commit()
        logger.info(f"Availability window {window_id} deleted")
        return None
