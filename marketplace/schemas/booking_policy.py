# marketplace/schemas/booking_policy.py
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.services.policy.exception_rules import ExceptionCondition


class PolicyCreate(BaseModel):
    service_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: Literal["cancellation", "rescheduling", "no-show"]
    hours_before_booking: int = Field(24, ge=0, le=720)
    penalty_type: Literal["none", "percentage", "fixed"] = "none"
    penalty_value: Decimal = Field(Decimal("0"), ge=0)
    allow_exceptions: bool = False
    exception_conditions: Optional[List[ExceptionCondition]] = None


class PolicyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    hours_before_booking: Optional[int] = Field(None, ge=0, le=720)
    penalty_type: Optional[Literal["none", "percentage", "fixed"]] = None
    penalty_value: Optional[Decimal] = Field(None, ge=0)
    allow_exceptions: Optional[bool] = None
    exception_conditions: Optional[List[ExceptionCondition]] = None
    is_active: Optional[bool] = None


class PolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_id: UUID
    name: str
    description: Optional[str] = None
    type: str
    hours_before_booking: int
    penalty_type: str
    penalty_value: Decimal
    allow_exceptions: bool
    exception_conditions: Optional[List[dict]] = None
    is_active: bool
    created_at: Optional[datetime] = None


class PolicyEvaluateRequest(BaseModel):
    policy_type: Literal["cancellation", "rescheduling", "no-show"]
    new_date: Optional[date] = Field(None, description="Target date when evaluating a reschedule")
    reason_code: Optional[str] = None
