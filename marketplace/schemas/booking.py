# marketplace/schemas/booking.py
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BookingCreate(BaseModel):
    """Payload for requesting a booking"""
    service_id: UUID = Field(..., description="Service being booked")
    booking_date: date = Field(..., description="Date of the appointment (UTC)")
    start_time: time = Field(..., description="Start time (HH:MM, UTC)")
    duration_minutes: Optional[int] = Field(None, ge=15, le=480, description="Defaults to the service duration")
    notes: Optional[str] = Field(None, max_length=1000)


class BookingDecline(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    reason_code: Optional[str] = Field(None, max_length=50, description="Matched by reason_code policy exceptions")


class BookingReschedule(BaseModel):
    new_date: date
    new_start_time: time


class PaymentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    service_fee: Decimal
    net_amount: Decimal
    status: str
    escrow_release_date: Optional[datetime] = None
    released_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_id: UUID
    customer_id: UUID
    provider_id: UUID
    recurring_series_id: Optional[UUID] = None
    status: str
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    price: Decimal
    service_fee: Decimal
    total_amount: Decimal
    penalty_amount: Decimal
    is_no_show: bool
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment: Optional[PaymentSummary] = None


class PolicyDecisionResponse(BaseModel):
    allowed: bool
    penalty: Decimal
    reason: Optional[str] = None
    policy_id: Optional[UUID] = None
    hours_until: Optional[float] = None
    waived_by: Optional[str] = None


class BookingDecisionResponse(BaseModel):
    """Booking after a policy-gated action, with the decision that applied"""
    booking: BookingResponse
    decision: PolicyDecisionResponse
