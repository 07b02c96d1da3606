# marketplace/services/booking/effects.py
"""
Follow-up effects of a committed state change.

Services collect effects while they hold the booking lock and hand them to a
dispatcher only after the transaction commits, so a slow gateway or notifier
never sits inside the critical section.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from kombu.exceptions import KombuError

logger = logging.getLogger(__name__)

NOTIFY = "notify"
CAPTURE_PAYMENT = "capture_payment"
REFUND_PAYMENT = "refund_payment"


@dataclass
class Effect:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


class EffectBatch:
    """Effects accumulated during one transaction"""

    def __init__(self):
        self.effects: List[Effect] = []

    def notify(self, event, recipient_id, **payload) -> None:
        event_name = getattr(event, "value", event)
        self.effects.append(Effect(NOTIFY, {
            "event": event_name,
            "recipient_id": str(recipient_id),
            "payload": {k: str(v) for k, v in payload.items()},
        }))

    def capture(self, payment_id) -> None:
        self.effects.append(Effect(CAPTURE_PAYMENT, {"payment_id": str(payment_id)}))

    def refund(self, payment_id, amount: Decimal) -> None:
        self.effects.append(Effect(REFUND_PAYMENT, {"payment_id": str(payment_id), "amount": str(amount)}))

    def __len__(self):
        return len(self.effects)


class EffectDispatcher:
    def dispatch(self, effects: List[Effect]) -> None:
        raise NotImplementedError


class CeleryEffectDispatcher(EffectDispatcher):
    """Queues each effect as a Celery task"""

    def dispatch(self, effects: List[Effect]) -> None:
        from marketplace.tasks.booking_tasks import capture_booking_payment, refund_booking_payment
        from marketplace.tasks.notification_tasks import send_notification

        for effect in effects:
            try:
                if effect.kind == NOTIFY:
                    send_notification.delay(
                        effect.payload["event"], effect.payload["recipient_id"], effect.payload["payload"]
                    )
                elif effect.kind == CAPTURE_PAYMENT:
                    capture_booking_payment.delay(effect.payload["payment_id"])
                elif effect.kind == REFUND_PAYMENT:
                    refund_booking_payment.delay(effect.payload["payment_id"], effect.payload["amount"])
                else:
                    logger.error(f"Unknown effect kind: {effect.kind}")
            except KombuError as e:
                # The state change is already committed; the effect is lost to the broker, not to the data
                logger.error(f"Failed to queue {effect.kind} effect {effect.payload}: {e}")
