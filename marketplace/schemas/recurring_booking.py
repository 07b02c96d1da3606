# marketplace/schemas/recurring_booking.py
from datetime import date, datetime, time
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace.schemas.booking import BookingResponse


class RecurringSeriesCreate(BaseModel):
    service_id: UUID
    frequency: Literal["daily", "weekly", "biweekly", "monthly"]
    interval: int = Field(1, ge=1, le=12)
    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(None, ge=1, le=52)
    days_of_week: Optional[List[int]] = Field(None, description="0 = Sunday ... 6 = Saturday (weekly/biweekly)")
    day_of_month: Optional[int] = Field(None, ge=1, le=31, description="Monthly only, clamped in short months")
    time_slot: time
    duration_minutes: Optional[int] = Field(None, ge=15, le=480)
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_rule(self):
        if self.end_date is not None and self.occurrences is not None:
            raise ValueError("Provide either end_date or occurrences, not both")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.days_of_week and any(d < 0 or d > 6 for d in self.days_of_week):
            raise ValueError("days_of_week values must be between 0 and 6")
        return self


class ResumeSeriesRequest(BaseModel):
    from_date: Optional[date] = Field(None, description="Defaults to today")


class CancelSeriesRequest(BaseModel):
    cancel_future_only: bool = True
    confirm: bool = Field(False, description="Required when cancel_future_only is false")


class RecurringSeriesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_id: UUID
    customer_id: UUID
    provider_id: UUID
    frequency: str
    interval: int
    start_date: date
    end_date: Optional[date] = None
    occurrences: Optional[int] = None
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = None
    time_slot: time
    duration_minutes: int
    status: str
    materialized_until: Optional[date] = None
    created_at: Optional[datetime] = None


class SkippedOccurrence(BaseModel):
    date: date
    reason: str
    detail: Optional[str] = None


class SeriesResultResponse(BaseModel):
    series: RecurringSeriesResponse
    occurrences: List[BookingResponse] = []
    skipped: List[SkippedOccurrence] = []
    cancelled: int = 0


class SeriesDetailResponse(BaseModel):
    series: RecurringSeriesResponse
    bookings: List[BookingResponse]
    upcoming_dates: List[date]

    @classmethod
    def from_detail(cls, detail: Dict[str, Any]) -> "SeriesDetailResponse":
        return cls.model_validate(detail, from_attributes=True)
