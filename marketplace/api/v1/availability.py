# ============================================================================
# marketplace/api/v1/availability.py
# Provider availability windows and time slots - thin HTTP layer
# ============================================================================
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from marketplace.api.dependencies import get_current_user_id
from marketplace.config.database import get_db
from marketplace.core.exceptions import AuthorizationError
from marketplace.schemas.availability import (
    AvailabilityWindowCreate, AvailabilityWindowResponse, GenerateSlotsRequest, GenerateSlotsResponse,
    TimeSlotResponse, WeeklyAvailabilityResponse, WeeklyScheduleResponse
)
from marketplace.services.availability.availability_service import AvailabilityService
from marketplace.services.availability.time_slot_service import TimeSlotGenerator

router = APIRouter(prefix="/providers/{provider_id}", tags=["availability"])


def _require_self(provider_id: UUID, current_user_id: UUID) -> None:
    if provider_id != current_user_id:
        raise AuthorizationError("Providers can only manage their own availability")


@router.get("/availability", response_model=WeeklyAvailabilityResponse)
def get_availability(
        provider_id: UUID = Path(..., description="The provider ID"),
        db: Session = Depends(get_db)
):
    """Active weekly windows grouped by day of week (0 = Sunday)."""
    return {"provider_id": provider_id, "days": AvailabilityService.get_availability(db, provider_id)}


@router.put("/availability", response_model=AvailabilityWindowResponse)
def set_availability(
        payload: AvailabilityWindowCreate,
        provider_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        db: Session = Depends(get_db)
):
    """Create or update a weekly availability window."""
    _require_self(provider_id, current_user_id)
    return AvailabilityService.set_availability(
        db,
        provider_id=provider_id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        is_active=payload.is_active,
    )


@router.delete("/availability/{window_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_availability(
        provider_id: UUID = Path(...),
        window_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        db: Session = Depends(get_db)
):
    _require_self(provider_id, current_user_id)
    AvailabilityService.remove_availability(db, provider_id, window_id)


@router.post("/slots/generate", response_model=GenerateSlotsResponse, status_code=status.HTTP_201_CREATED)
def generate_slots(
        payload: GenerateSlotsRequest,
        provider_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        db: Session = Depends(get_db)
):
    """Materialize missing slots for a date range. Existing slots are left untouched."""
    _require_self(provider_id, current_user_id)
    slots = TimeSlotGenerator.generate(
        db,
        provider_id=provider_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        duration_minutes=payload.duration_minutes,
        service_id=payload.service_id,
    )
    return {"created": len(slots), "slots": slots}


@router.get("/slots", response_model=List[TimeSlotResponse])
def get_available_slots(
        provider_id: UUID = Path(...),
        slot_date: date = Query(..., alias="date", description="Day to list free slots for"),
        service_id: Optional[UUID] = Query(None),
        db: Session = Depends(get_db)
):
    return TimeSlotGenerator.get_available_slots(db, provider_id, slot_date, service_id)


@router.get("/schedule", response_model=WeeklyScheduleResponse)
def get_weekly_schedule(
        provider_id: UUID = Path(...),
        week_start: date = Query(..., description="First day of the week to show"),
        db: Session = Depends(get_db)
):
    schedule = TimeSlotGenerator.get_weekly_schedule(db, provider_id, week_start)
    return {"provider_id": provider_id, "week_start": week_start, "days": schedule}
