# ============================================================================
# marketplace/services/escrow/escrow_service.py
# Fund holding period, release to provider balance and disputes
# ============================================================================
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings, get_settings
from marketplace.core.exceptions import (
    AuthorizationError, BookingEngineError, ConflictError, NotFoundError, PolicyViolationError
)
from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.payment import Payment, PaymentStatus
from marketplace.models.user import User
from marketplace.services.booking.effects import EffectBatch, EffectDispatcher
from marketplace.services.notification.notification_service import NotificationEvent
from marketplace.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class EscrowService:
    """EscrowScheduler: funds stay held until the holding period after completion elapses"""

    def __init__(self, db: Session, dispatcher: Optional[EffectDispatcher] = None,
                 settings: Optional[Settings] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    @property
    def holding_period(self) -> timedelta:
        return timedelta(days=self.settings.ESCROW_HOLDING_PERIOD_DAYS)

    @staticmethod
    def calculate_fees(amount: Decimal, fee_percent: Optional[float] = None) -> Tuple[Decimal, Decimal]:
        """Split a gross amount into (platform fee, provider net)"""
        if fee_percent is None:
            fee_percent = get_settings().PLATFORM_FEE_PERCENT
        amount = Decimal(amount)
        fee = (amount * Decimal(str(fee_percent)) / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
        return fee, (amount - fee).quantize(CENTS)

    # ------------------------------------------------------------------
    # Scheduling (called inside the booking transaction, no commit)
    # ------------------------------------------------------------------

    def schedule_tentative(self, booking: Booking) -> Optional[datetime]:
        """On accept: provisional release date counted from the service end"""
        payment = booking.payment
        if payment is None:
            return None
        payment.escrow_release_date = booking.ends_at + self.holding_period
        return payment.escrow_release_date

    def apply_completion(self, booking: Booking) -> Optional[datetime]:
        """On completion: the holding period restarts from completed_at"""
        payment = booking.payment
        if payment is None or booking.completed_at is None:
            return None
        release_date = ensure_utc(booking.completed_at) + self.holding_period
        if payment.disputed_at is not None and payment.escrow_release_date is not None:
            # A frozen payment keeps its (later) dispute date
            release_date = max(release_date, ensure_utc(payment.escrow_release_date))
        payment.escrow_release_date = release_date
        return release_date

    def on_completion(self, booking_id: UUID) -> Payment:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking or not booking.payment:
            raise NotFoundError("Booking payment not found", {"booking_id": str(booking_id)})
        if booking.status != BookingStatus.COMPLETED.value:
            raise PolicyViolationError("Escrow holding starts only once the booking is completed")
        self.apply_completion(booking)
        self.db.commit()
        self.db.refresh(booking.payment)
        return booking.payment

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def on_release_due(self, payment_id: UUID, now: Optional[datetime] = None) -> Payment:
        """
        Credit the provider with the payment's net amount.

        The ``released_at IS NULL`` guard on the UPDATE makes a second call
        (or a concurrent batch) fail with ConflictError instead of crediting twice.
        """
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        try:
            payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
            if not payment:
                raise NotFoundError("Payment not found", {"payment_id": str(payment_id)})

            booking = payment.booking
            if payment.released_at is not None:
                raise ConflictError("Funds have already been released", {"payment_id": str(payment_id)})
            if payment.status != PaymentStatus.PAID.value:
                raise PolicyViolationError(f"Payment is {payment.status}, only paid payments are released")
            if booking.status != BookingStatus.COMPLETED.value:
                raise PolicyViolationError("Booking must be completed before funds are released")
            if payment.escrow_release_date is None or now < ensure_utc(payment.escrow_release_date):
                raise PolicyViolationError(
                    "Escrow holding period has not ended yet",
                    {"escrow_release_date": str(payment.escrow_release_date)}
                )

            updated = self.db.query(Payment).filter(
                Payment.id == payment.id,
                Payment.released_at.is_(None)
            ).update({Payment.released_at: now}, synchronize_session=False)
            if updated != 1:
                raise ConflictError("Funds have already been released", {"payment_id": str(payment_id)})

            self.db.query(User).filter(User.id == booking.provider_id).update(
                {User.account_balance: User.account_balance + payment.net_amount},
                synchronize_session=False
            )

            self.db.commit()
        except (BookingEngineError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(payment)
        logger.info(f"Released {payment.net_amount} to provider {booking.provider_id} (payment {payment_id})")

        effects.notify(NotificationEvent.FUNDS_AVAILABLE, booking.provider_id,
                       payment_id=payment.id, amount=payment.net_amount)
        if self.dispatcher:
            self.dispatcher.dispatch(effects.effects)
        return payment

    def process_due_releases(self, now: Optional[datetime] = None, limit: int = 500) -> Dict[str, int]:
        """Periodic batch: release every due payment; failures are retried next run"""
        now = ensure_utc(now) or utcnow()

        due_ids = [
            row.id for row in self.db.query(Payment.id).join(Booking, Payment.booking_id == Booking.id).filter(
                Payment.status == PaymentStatus.PAID.value,
                Payment.released_at.is_(None),
                Payment.escrow_release_date <= now,
                Booking.status == BookingStatus.COMPLETED.value,
            ).order_by(Payment.escrow_release_date).limit(limit).all()
        ]

        results = {"processed": len(due_ids), "released": 0, "skipped": 0, "errors": 0}
        for payment_id in due_ids:
            try:
                self.on_release_due(payment_id, now=now)
                results["released"] += 1
            except ConflictError:
                results["skipped"] += 1
            except BookingEngineError as e:
                logger.warning(f"Escrow release skipped for payment {payment_id}: {e.message}")
                results["errors"] += 1
            except SQLAlchemyError as e:
                logger.error(f"Escrow release failed for payment {payment_id}: {e}")
                results["errors"] += 1

        logger.info(f"Escrow batch: {results}")
        return results

    # ------------------------------------------------------------------
    # Disputes and reporting
    # ------------------------------------------------------------------

    def freeze(self, payment_id: UUID, actor_id: UUID, reason: str,
               now: Optional[datetime] = None) -> Payment:
        """Dispute: hold the funds for an extra extension period"""
        now = ensure_utc(now) or utcnow()
        effects = EffectBatch()

        payment = self.db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
        if not payment:
            raise NotFoundError("Payment not found", {"payment_id": str(payment_id)})

        booking = payment.booking
        if not booking.is_party(actor_id):
            self.db.rollback()
            raise AuthorizationError("Only the booking parties can dispute a payment")
        if payment.released_at is not None:
            self.db.rollback()
            raise ConflictError("Funds have already been released")

        base = ensure_utc(payment.escrow_release_date) or now
        payment.escrow_release_date = max(base, now) + timedelta(days=self.settings.ESCROW_DISPUTE_EXTENSION_DAYS)
        payment.disputed_at = now
        payment.dispute_reason = reason
        self.db.commit()
        self.db.refresh(payment)

        logger.warning(f"Payment {payment_id} frozen until {payment.escrow_release_date}: {reason}")

        other_party = booking.provider_id if actor_id == booking.customer_id else booking.customer_id
        effects.notify(NotificationEvent.PAYMENT_DISPUTED, other_party, payment_id=payment.id, reason=reason)
        if self.dispatcher:
            self.dispatcher.dispatch(effects.effects)
        return payment

    def get_provider_earnings(self, provider_id: UUID) -> Dict[str, Any]:
        rows = self.db.query(
            Payment.status,
            Payment.released_at.is_(None).label("held"),
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.net_amount), 0),
        ).join(Booking, Payment.booking_id == Booking.id).filter(
            Booking.provider_id == provider_id
        ).group_by(Payment.status, Payment.released_at.is_(None)).all()

        released = Decimal(0)
        held = Decimal(0)
        pending = Decimal(0)
        payments = 0
        for status, is_held, count, total in rows:
            total = Decimal(total)
            payments += count
            if status == PaymentStatus.PAID.value and not is_held:
                released += total
            elif status == PaymentStatus.PAID.value:
                held += total
            elif status in (PaymentStatus.PENDING.value, PaymentStatus.CAPTURING.value):
                pending += total

        provider = self.db.query(User).filter(User.id == provider_id).first()
        if not provider:
            raise NotFoundError("Provider not found", {"provider_id": str(provider_id)})

        return {
            "provider_id": str(provider_id),
            "account_balance": Decimal(provider.account_balance).quantize(CENTS),
            "released": released.quantize(CENTS),
            "in_escrow": held.quantize(CENTS),
            "awaiting_capture": pending.quantize(CENTS),
            "payments": payments,
        }
