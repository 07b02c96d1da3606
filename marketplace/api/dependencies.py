# ============================================================================
# FILE: marketplace/api/dependencies.py
# Request-scoped dependencies: caller identity and service wiring
# ============================================================================
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketplace.config.database import get_db
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.booking.effects import CeleryEffectDispatcher, EffectDispatcher
from marketplace.services.escrow.escrow_service import EscrowService
from marketplace.services.policy.policy_service import PolicyService
from marketplace.services.recurring.recurring_booking_service import RecurringBookingService


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> UUID:
    """
    Caller identity as asserted by the upstream gateway.

    Authentication happens before requests reach this service; the gateway
    forwards the authenticated user's id in the X-User-Id header.
    """
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )


def get_effect_dispatcher() -> EffectDispatcher:
    return CeleryEffectDispatcher()


def get_booking_service(
        db: Session = Depends(get_db),
        dispatcher: EffectDispatcher = Depends(get_effect_dispatcher)
) -> BookingService:
    return BookingService(db, dispatcher)


def get_recurring_service(
        db: Session = Depends(get_db),
        dispatcher: EffectDispatcher = Depends(get_effect_dispatcher)
) -> RecurringBookingService:
    return RecurringBookingService(db, dispatcher)


def get_policy_service(db: Session = Depends(get_db)) -> PolicyService:
    return PolicyService(db)


def get_escrow_service(
        db: Session = Depends(get_db),
        dispatcher: EffectDispatcher = Depends(get_effect_dispatcher)
) -> EscrowService:
    return EscrowService(db, dispatcher)
