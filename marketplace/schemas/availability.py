# marketplace/schemas/availability.py
from datetime import date, time
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AvailabilityWindowCreate(BaseModel):
    """One weekly availability window"""
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time = Field(..., description="Window start (HH:MM, UTC)")
    end_time: time = Field(..., description="Window end (HH:MM, UTC)")
    is_active: bool = Field(True, description="Inactive windows never produce slots")

    @model_validator(mode="after")
    def check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityWindowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class WeeklyAvailabilityResponse(BaseModel):
    provider_id: UUID
    days: Dict[int, List[AvailabilityWindowResponse]]


class GenerateSlotsRequest(BaseModel):
    start_date: date
    end_date: date
    duration_minutes: int = Field(..., ge=15, le=480, description="Slot length in minutes")
    service_id: Optional[UUID] = Field(None, description="Restrict the slots to one service")

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_id: UUID
    service_id: Optional[UUID] = None
    date: date
    start_time: time
    end_time: time
    is_booked: bool
    booking_id: Optional[UUID] = None


class GenerateSlotsResponse(BaseModel):
    created: int
    slots: List[TimeSlotResponse]


class WeeklyScheduleResponse(BaseModel):
    provider_id: UUID
    week_start: date
    days: Dict[date, List[TimeSlotResponse]]
