# ============================================================================
# marketplace/api/v1/escrow.py
# Escrow endpoints - thin HTTP layer
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from marketplace.api.dependencies import get_current_user_id, get_escrow_service
from marketplace.core.exceptions import AuthorizationError
from marketplace.schemas.booking import PaymentSummary
from marketplace.schemas.escrow import DisputeRequest, EarningsResponse
from marketplace.services.escrow.escrow_service import EscrowService

router = APIRouter(prefix="/escrow", tags=["escrow"])


@router.get("/providers/{provider_id}/earnings", response_model=EarningsResponse)
def get_provider_earnings(
        provider_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: EscrowService = Depends(get_escrow_service)
):
    """Released funds, funds still in escrow and funds awaiting capture."""
    if provider_id != current_user_id:
        raise AuthorizationError("Providers can only view their own earnings")
    return service.get_provider_earnings(provider_id)


@router.post("/payments/{payment_id}/dispute", response_model=PaymentSummary)
def dispute_payment(
        payload: DisputeRequest,
        payment_id: UUID = Path(...),
        current_user_id: UUID = Depends(get_current_user_id),
        service: EscrowService = Depends(get_escrow_service)
):
    """Freeze a payment's escrow while a dispute is open."""
    return service.freeze(payment_id, current_user_id, payload.reason)
