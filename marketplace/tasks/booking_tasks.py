# ===== marketplace/tasks/booking_tasks.py =====
from decimal import Decimal
from uuid import UUID

from marketplace.config.celery_config import celery_app
from marketplace.config.database import SessionLocal
from marketplace.config.redis import RedisKeys
from marketplace.core.exceptions import GatewayError, NotFoundError
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.booking.effects import CeleryEffectDispatcher
from marketplace.services.payment.gateway import get_payment_gateway
from marketplace.services.payment.payment_service import PaymentService
from marketplace.tasks.locks import batch_lock
import logging

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def capture_booking_payment(self, payment_id: str):
    """Capture the customer's payment once the provider accepted"""
    db = SessionLocal()
    try:
        payment = PaymentService(db, get_payment_gateway()).capture(UUID(payment_id))
        return {"status": payment.status, "payment_id": payment_id}

    except NotFoundError:
        logger.error(f"Payment {payment_id} not found for capture")
        return {"status": "failed", "reason": "payment_not_found"}

    except GatewayError as exc:
        logger.error(f"Capture failed for payment {payment_id}: {exc.message}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def refund_booking_payment(self, payment_id: str, amount: str):
    """Refund a cancelled / declined booking"""
    db = SessionLocal()
    try:
        payment = PaymentService(db, get_payment_gateway()).refund(UUID(payment_id), Decimal(amount))
        return {"status": payment.status, "payment_id": payment_id}

    except NotFoundError:
        logger.error(f"Payment {payment_id} not found for refund")
        return {"status": "failed", "reason": "payment_not_found"}

    except GatewayError as exc:
        logger.error(f"Refund failed for payment {payment_id}: {exc.message}")
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()


@celery_app.task
def auto_complete_bookings():
    """Complete accepted / in-progress bookings whose service end has passed"""
    with batch_lock(RedisKeys.AUTO_COMPLETE_LOCK) as acquired:
        if not acquired:
            logger.info("Auto-complete already running, skipping")
            return {"status": "skipped"}

        db = SessionLocal()
        try:
            completed = BookingService(db, CeleryEffectDispatcher()).complete_past_bookings()
            return {"status": "success", "completed": completed}
        finally:
            db.close()
