# ============================================================================
# marketplace/services/notification/notification_service.py
# Outbound notification collaborator (fire-and-forget, channel agnostic)
# ============================================================================
import enum
import logging
from typing import Any, Dict, Optional

import requests

from marketplace.config.settings import get_settings
from marketplace.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    """Named events emitted by the booking engine"""
    BOOKING_CREATED = "booking_created"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_DECLINED = "booking_declined"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_NO_SHOW = "booking_no_show"
    BOOKING_RESCHEDULED = "booking_rescheduled"
    FUNDS_AVAILABLE = "funds_available"
    PAYMENT_DISPUTED = "payment_disputed"


class Notifier:
    """Narrow contract of the notification collaborator"""

    def notify(self, event: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Used when no delivery webhook is configured"""

    def notify(self, event: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification {event} for {recipient_id}: {payload}")


class WebhookNotifier(Notifier):
    """Hands events to the delivery service over HTTP"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def notify(self, event: str, recipient_id: str, payload: Dict[str, Any]) -> None:
        try:
            response = requests.post(
                self.url,
                json={"event": event, "recipient_id": recipient_id, "payload": payload},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise GatewayError(f"Notification delivery failed for {event}: {e}") from e


def get_notifier(url: Optional[str] = None) -> Notifier:
    settings = get_settings()
    url = url or settings.NOTIFICATION_WEBHOOK_URL
    if url:
        return WebhookNotifier(url, timeout=settings.HTTP_TIMEOUT_SECONDS)
    return LoggingNotifier()
