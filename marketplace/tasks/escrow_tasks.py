# ===== marketplace/tasks/escrow_tasks.py =====
from marketplace.config.celery_config import celery_app
from marketplace.config.database import SessionLocal
from marketplace.config.redis import RedisKeys
from marketplace.services.booking.effects import CeleryEffectDispatcher
from marketplace.services.escrow.escrow_service import EscrowService
from marketplace.tasks.locks import batch_lock
import logging

logger = logging.getLogger(__name__)


@celery_app.task
def release_due_escrow():
    """Hourly: move funds whose holding period ended to the providers' balances"""
    with batch_lock(RedisKeys.ESCROW_RELEASE_LOCK) as acquired:
        if not acquired:
            logger.info("Escrow release batch already running, skipping")
            return {"status": "skipped"}

        db = SessionLocal()
        try:
            results = EscrowService(db, CeleryEffectDispatcher()).process_due_releases()
            return {"status": "success", **results}
        finally:
            db.close()
