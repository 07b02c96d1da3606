# ============================================================================
# marketplace/api/v1/bookings.py
# Booking lifecycle endpoints - thin HTTP layer
# ============================================================================
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status

from marketplace.api.dependencies import get_booking_service, get_current_user_id, get_policy_service
from marketplace.schemas.booking import (
    BookingCancel, BookingCreate, BookingDecisionResponse, BookingDecline, BookingReschedule, BookingResponse,
    PolicyDecisionResponse
)
from marketplace.schemas.booking_policy import PolicyEvaluateRequest
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.policy.policy_service import PolicyService

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _decision_response(booking, decision) -> dict:
    return {
        "booking": BookingResponse.model_validate(booking),
        "decision": PolicyDecisionResponse.model_validate(decision, from_attributes=True),
    }


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
        payload: BookingCreate,
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    """
    Request a booking. The booking starts as pending until the provider accepts.
    Returns 409 when the provider is already booked for that time.
    """
    return service.create_booking(
        customer_id=current_user_id,
        service_id=payload.service_id,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        duration_minutes=payload.duration_minutes,
        notes=payload.notes,
    )


@router.get("", response_model=List[BookingResponse])
def list_bookings(
        role: Literal["customer", "provider"] = Query("customer", description="List as customer or as provider"),
        status_filter: Optional[str] = Query(None, alias="status",
                                             description="pending, accepted, declined, in_progress, completed, cancelled"),
        skip: int = Query(0, ge=0),
        limit: int = Query(50, ge=1, le=100),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.list_bookings(current_user_id, role=role, status=status_filter, limit=limit, offset=skip)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
        booking_id: UUID = Path(..., description="The booking ID"),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.get_booking(booking_id, current_user_id)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
def accept_booking(
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.accept_booking(booking_id, current_user_id)


@router.post("/{booking_id}/decline", response_model=BookingResponse)
def decline_booking(
        payload: BookingDecline,
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.decline_booking(booking_id, current_user_id, reason=payload.reason)


@router.post("/{booking_id}/start", response_model=BookingResponse)
def start_booking(
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.start_booking(booking_id, current_user_id)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    return service.complete_booking(booking_id, current_user_id)


@router.post("/{booking_id}/cancel", response_model=BookingDecisionResponse)
def cancel_booking(
        payload: BookingCancel,
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    """Cancel a booking. The response carries the policy decision and any penalty."""
    booking, decision = service.cancel_booking(
        booking_id, current_user_id, reason=payload.reason, reason_code=payload.reason_code
    )
    return _decision_response(booking, decision)


@router.post("/{booking_id}/no-show", response_model=BookingDecisionResponse)
def mark_no_show(
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    booking, decision = service.mark_no_show(booking_id, current_user_id)
    return _decision_response(booking, decision)


@router.post("/{booking_id}/reschedule", response_model=BookingDecisionResponse)
def reschedule_booking(
        payload: BookingReschedule,
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: BookingService = Depends(get_booking_service)
):
    booking, decision = service.reschedule_booking(
        booking_id, current_user_id, new_date=payload.new_date, new_start_time=payload.new_start_time
    )
    return _decision_response(booking, decision)


@router.post("/{booking_id}/policy-check", response_model=PolicyDecisionResponse)
def evaluate_policy(
        payload: PolicyEvaluateRequest,
        booking_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        booking_service: BookingService = Depends(get_booking_service),
        policy_service: PolicyService = Depends(get_policy_service)
):
    """Preview what a cancellation, reschedule or no-show would cost without changing anything."""
    booking_service.get_booking(booking_id, current_user_id)
    decision = policy_service.evaluate(
        booking_id, payload.policy_type, new_date=payload.new_date,
        actor_id=current_user_id, reason_code=payload.reason_code
    )
    return PolicyDecisionResponse.model_validate(decision, from_attributes=True)
