# ============================================================================
# marketplace/api/v1/recurring_bookings.py
# Recurring series endpoints - thin HTTP layer
# ============================================================================
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status

from marketplace.api.dependencies import get_current_user_id, get_recurring_service
from marketplace.schemas.recurring_booking import (
    CancelSeriesRequest, RecurringSeriesCreate, RecurringSeriesResponse, ResumeSeriesRequest,
    SeriesDetailResponse, SeriesResultResponse
)
from marketplace.services.recurring.recurring_booking_service import RecurringBookingService

router = APIRouter(prefix="/recurring-bookings", tags=["recurring-bookings"])


def _result_response(result) -> SeriesResultResponse:
    return SeriesResultResponse.model_validate(result, from_attributes=True)


@router.post("", response_model=SeriesResultResponse, status_code=status.HTTP_201_CREATED)
def create_series(
        payload: RecurringSeriesCreate,
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    """
    Create a recurring series and book its occurrences.
    Conflicting or past dates are skipped and listed in ``skipped``.
    """
    return _result_response(service.create_series(customer_id=current_user_id, **payload.model_dump()))


@router.get("", response_model=List[RecurringSeriesResponse])
def list_series(
        status_filter: Optional[str] = Query(None, alias="status", description="active, paused, cancelled"),
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    return service.list_series(current_user_id, status=status_filter)


@router.get("/{series_id}", response_model=SeriesDetailResponse)
def get_series(
        series_id: UUID = Path(..., description="The series ID"),
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    return SeriesDetailResponse.from_detail(service.get_series(series_id, current_user_id))


@router.post("/{series_id}/pause", response_model=SeriesResultResponse)
def pause_series(
        series_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    """Pause the series. Future occurrences that are not completed are cancelled."""
    return _result_response(service.pause_series(series_id, current_user_id))


@router.post("/{series_id}/resume", response_model=SeriesResultResponse)
def resume_series(
        payload: ResumeSeriesRequest,
        series_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    return _result_response(service.resume_series(series_id, current_user_id, from_date=payload.from_date))


@router.post("/{series_id}/cancel", response_model=SeriesResultResponse)
def cancel_series(
        payload: CancelSeriesRequest,
        series_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: RecurringBookingService = Depends(get_recurring_service)
):
    result = service.cancel_series(
        series_id, current_user_id,
        cancel_future_only=payload.cancel_future_only,
        confirm=payload.confirm,
    )
    return _result_response(result)
