# ============================================================================
# marketplace/services/payment/payment_service.py
# Records gateway results for follow-up effects (runs in Celery tasks)
# ============================================================================
import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from marketplace.core.exceptions import GatewayError, NotFoundError
from marketplace.models.booking import BookingStatus
from marketplace.models.payment import Payment, PaymentStatus
from marketplace.services.payment.gateway import PaymentGateway
from marketplace.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

_CAPTURABLE_BOOKING_STATUSES = (
    BookingStatus.ACCEPTED.value,
    BookingStatus.IN_PROGRESS.value,
    BookingStatus.COMPLETED.value,
)


class PaymentService:
    """Capture and refund bookkeeping around the gateway"""

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway

    def _get_payment(self, payment_id: UUID) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment not found", {"payment_id": str(payment_id)})
        return payment

    def _lock_payment(self, payment_id: UUID) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
        if not payment:
            raise NotFoundError("Payment not found", {"payment_id": str(payment_id)})
        return payment

    def capture(self, payment_id: UUID) -> Payment:
        """
        Capture an accepted booking's payment; already-settled payments are left alone.

        The row is claimed as ``capturing`` before the gateway call so a concurrent
        cancellation neither voids it nor queues its own refund. Once the gateway
        answers, the booking is re-checked; if it left the capturable statuses in
        the meantime the customer is refunded what the cancellation owes them.
        """
        payment = self._lock_payment(payment_id)

        if payment.status != PaymentStatus.PENDING.value:
            logger.info(f"Payment {payment_id} is {payment.status}, skipping capture")
            self.db.commit()
            return payment

        if payment.booking.status not in _CAPTURABLE_BOOKING_STATUSES:
            logger.info(f"Booking {payment.booking_id} is {payment.booking.status}, skipping capture")
            self.db.commit()
            return payment

        booking_id, amount = payment.booking_id, payment.amount
        payment.status = PaymentStatus.CAPTURING.value
        self.db.commit()

        try:
            result = self.gateway.capture_payment(str(booking_id), amount)
        except GatewayError as e:
            payment = self._lock_payment(payment_id)
            payment.status = PaymentStatus.PENDING.value
            payment.last_gateway_error = e.message
            self.db.commit()
            raise

        payment = self._lock_payment(payment_id)
        self.db.refresh(payment.booking)
        payment.transaction_id = result.transaction_id
        payment.last_gateway_error = None
        if result.status not in ("paid", "captured", "succeeded"):
            payment.status = PaymentStatus.FAILED.value
        else:
            payment.status = PaymentStatus.PAID.value

        if payment.status == PaymentStatus.PAID.value and payment.booking.status not in _CAPTURABLE_BOOKING_STATUSES:
            logger.warning(
                f"Booking {booking_id} became {payment.booking.status} during capture, refunding payment {payment_id}"
            )
            self.db.commit()
            owed = Decimal(payment.amount) - Decimal(payment.booking.penalty_amount or 0)
            return self.refund(payment_id, owed)

        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"Payment {payment_id} capture recorded as {payment.status}")
        return payment

    def refund(self, payment_id: UUID, amount: Decimal) -> Payment:
        """Refund ``amount`` of a captured payment; uncaptured payments are voided"""
        payment = self._get_payment(payment_id)
        amount = Decimal(amount)

        if not payment.transaction_id:
            payment.status = PaymentStatus.VOIDED.value
            self.db.commit()
            logger.info(f"Payment {payment_id} had no capture, voided instead of refunded")
            return payment

        if payment.refund_id:
            logger.info(f"Payment {payment_id} already refunded ({payment.refund_id})")
            return payment

        if amount <= 0:
            logger.info(f"Nothing to refund for payment {payment_id}")
            return payment

        try:
            result = self.gateway.refund(payment.transaction_id, amount)
        except GatewayError as e:
            payment.last_gateway_error = e.message
            self.db.commit()
            raise

        payment.refund_id = result.refund_id
        payment.refund_amount = amount
        payment.refunded_at = utcnow()
        if amount >= Decimal(payment.amount):
            payment.status = PaymentStatus.REFUNDED.value
        else:
            payment.status = PaymentStatus.PARTIALLY_REFUNDED.value
        payment.last_gateway_error = None
        self.db.commit()
        self.db.refresh(payment)

        logger.info(f"Refunded {amount} on payment {payment_id}")
        return payment
