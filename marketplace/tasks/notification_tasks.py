# ===== marketplace/tasks/notification_tasks.py =====
from marketplace.config.celery_config import celery_app
from marketplace.core.exceptions import GatewayError
from marketplace.services.notification.notification_service import get_notifier
import logging

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_notification(self, event: str, recipient_id: str, payload: dict):
    """Deliver a booking event to the notification service"""
    try:
        get_notifier().notify(event, recipient_id, payload)
        return {"status": "sent", "event": event}

    except GatewayError as exc:
        logger.error(f"Notification {event} to {recipient_id} failed: {exc.message}")
        raise self.retry(exc=exc, countdown=30 * (self.request.retries + 1))
