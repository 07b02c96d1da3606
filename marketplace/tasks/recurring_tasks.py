# ===== marketplace/tasks/recurring_tasks.py =====
from marketplace.config.celery_config import celery_app
from marketplace.config.database import SessionLocal
from marketplace.config.redis import RedisKeys
from marketplace.services.booking.effects import CeleryEffectDispatcher
from marketplace.services.recurring.recurring_booking_service import RecurringBookingService
from marketplace.tasks.locks import batch_lock
import logging

logger = logging.getLogger(__name__)


@celery_app.task
def extend_recurring_horizons():
    """Daily: materialize open-ended series up to the rolling horizon"""
    with batch_lock(RedisKeys.SERIES_HORIZON_LOCK) as acquired:
        if not acquired:
            logger.info("Horizon extension already running, skipping")
            return {"status": "skipped"}

        db = SessionLocal()
        try:
            stats = RecurringBookingService(db, CeleryEffectDispatcher()).extend_all_horizons()
            return {"status": "success", **stats}
        finally:
            db.close()
