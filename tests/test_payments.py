"""Tests for gateway bookkeeping and effect dispatch."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests
from kombu.exceptions import OperationalError
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import NOW, FakeGateway, RecordingDispatcher, add_policy, book
from marketplace.core.exceptions import GatewayError
from marketplace.models import BookingStatus, Payment, PaymentStatus
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.booking.effects import (
    CAPTURE_PAYMENT, NOTIFY, REFUND_PAYMENT, CeleryEffectDispatcher, EffectBatch
)
from marketplace.services.notification.notification_service import (
    LoggingNotifier, WebhookNotifier, get_notifier
)
from marketplace.services.payment.gateway import (
    CaptureResult, HttpPaymentGateway
)
from marketplace.services.payment.payment_service import PaymentService
from marketplace.tasks.locks import batch_lock


class TestPaymentService:
    def test_capture_marks_paid(self, db, accepted):
        payment = PaymentService(db, FakeGateway()).capture(accepted.payment.id)

        assert payment.status == PaymentStatus.PAID.value
        assert payment.transaction_id.startswith("txn_")

    def test_declined_capture_marks_failed(self, db, accepted):
        payment = PaymentService(db, FakeGateway(capture_status="declined")).capture(accepted.payment.id)

        assert payment.status == PaymentStatus.FAILED.value

    def test_capture_skips_pending_booking(self, db, customer, service, booking_service):
        booking = book(booking_service, customer, service)

        payment = PaymentService(db, FakeGateway()).capture(booking.payment.id)

        assert payment.status == PaymentStatus.PENDING.value

    def test_gateway_error_is_recorded(self, db, accepted):
        with pytest.raises(GatewayError):
            PaymentService(db, FakeGateway(fail=True)).capture(accepted.payment.id)

        db.refresh(accepted.payment)
        assert accepted.payment.last_gateway_error == "gateway down"
        assert accepted.payment.status == PaymentStatus.PENDING.value

    def test_partial_refund(self, db, accepted):
        gateway = FakeGateway()
        service = PaymentService(db, gateway)
        service.capture(accepted.payment.id)

        payment = service.refund(accepted.payment.id, Decimal("50.00"))

        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert payment.refund_amount == Decimal("50.00")
        assert len(gateway.refunds) == 1

    def test_refund_is_not_repeated(self, db, accepted):
        gateway = FakeGateway()
        service = PaymentService(db, gateway)
        service.capture(accepted.payment.id)

        service.refund(accepted.payment.id, Decimal("100.00"))
        payment = service.refund(accepted.payment.id, Decimal("100.00"))

        assert payment.status == PaymentStatus.REFUNDED.value
        assert len(gateway.refunds) == 1

    def test_uncaptured_refund_voids(self, db, accepted):
        payment = PaymentService(db, FakeGateway()).refund(accepted.payment.id, Decimal("100.00"))

        assert payment.status == PaymentStatus.VOIDED.value


class CancellingGateway(FakeGateway):
    """Cancels the booking from a second session while the capture call is in flight"""

    def __init__(self, session_factory, booking_id, customer_id, cancel_at=NOW):
        super().__init__()
        self.session_factory = session_factory
        self.booking_id = booking_id
        self.customer_id = customer_id
        self.cancel_at = cancel_at
        self.dispatcher = RecordingDispatcher()
        self.status_during_cancel = None

    def capture_payment(self, order_ref, amount):
        other = self.session_factory()
        try:
            booking, _ = BookingService(other, self.dispatcher).cancel_booking(
                self.booking_id, self.customer_id, now=self.cancel_at
            )
            self.status_during_cancel = booking.payment.status
        finally:
            other.close()
        return super().capture_payment(order_ref, amount)


class TestCaptureRace:
    def test_cancel_during_capture_refunds_customer(self, db, session_factory, customer, accepted):
        payment_id = accepted.payment.id
        gateway = CancellingGateway(session_factory, accepted.id, customer.id)

        payment = PaymentService(db, gateway).capture(payment_id)

        db.refresh(accepted)
        assert accepted.status == BookingStatus.CANCELLED.value
        assert gateway.status_during_cancel == PaymentStatus.CAPTURING.value
        assert REFUND_PAYMENT not in gateway.dispatcher.kinds()
        assert payment.status == PaymentStatus.REFUNDED.value
        assert gateway.refunds == [(payment.transaction_id, Decimal("100.00"))]

    def test_late_cancel_during_capture_keeps_penalty(self, db, session_factory, customer, service, accepted):
        add_policy(db, service)
        gateway = CancellingGateway(session_factory, accepted.id, customer.id, cancel_at=NOW + timedelta(hours=15))

        payment = PaymentService(db, gateway).capture(accepted.payment.id)

        db.refresh(accepted)
        assert accepted.penalty_amount == Decimal("50.00")
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert gateway.refunds == [(payment.transaction_id, Decimal("50.00"))]

    def test_capture_claims_payment_before_gateway_call(self, db, accepted):
        payment_id = accepted.payment.id
        seen = []

        class WatchingGateway(FakeGateway):
            def capture_payment(self, order_ref, amount):
                seen.append(db.query(Payment.status).filter(Payment.id == payment_id).scalar())
                return super().capture_payment(order_ref, amount)

        PaymentService(db, WatchingGateway()).capture(payment_id)

        assert seen == [PaymentStatus.CAPTURING.value]


class TestHttpGateway:
    @patch("marketplace.services.payment.gateway.requests.post")
    def test_capture(self, mock_post):
        mock_post.return_value.json.return_value = {"transaction_id": "txn_9", "status": "paid"}

        result = HttpPaymentGateway("https://pay.example.com/", api_key="k").capture_payment("b1", Decimal("10"))

        assert result == CaptureResult(transaction_id="txn_9", status="paid")
        args, kwargs = mock_post.call_args
        assert args[0] == "https://pay.example.com/captures"
        assert kwargs["headers"] == {"Authorization": "Bearer k"}

    @patch("marketplace.services.payment.gateway.requests.post")
    def test_transport_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(GatewayError):
            HttpPaymentGateway("https://pay.example.com").refund("txn_9", Decimal("10"))


class TestNotifier:
    def test_logging_notifier_without_webhook(self):
        assert isinstance(get_notifier(), LoggingNotifier)

    @patch("marketplace.services.notification.notification_service.requests.post")
    def test_webhook_failure(self, mock_post):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError("503")

        with pytest.raises(GatewayError):
            WebhookNotifier("https://hooks.example.com").notify("booking_created", "u1", {})


class TestEffects:
    def test_batch_stringifies_payload(self):
        batch = EffectBatch()
        batch.notify("booking_cancelled", 42, penalty=Decimal("12.50"))
        batch.capture("p1")

        assert len(batch) == 2
        assert batch.effects[0].kind == NOTIFY
        assert batch.effects[0].payload == {
            "event": "booking_cancelled", "recipient_id": "42", "payload": {"penalty": "12.50"}
        }
        assert batch.effects[1].kind == CAPTURE_PAYMENT

    @patch("marketplace.tasks.notification_tasks.send_notification")
    @patch("marketplace.tasks.booking_tasks.capture_booking_payment")
    def test_celery_dispatcher_queues_tasks(self, capture_task, notify_task):
        batch = EffectBatch()
        batch.capture("p1")
        batch.notify("booking_accepted", "u1")

        CeleryEffectDispatcher().dispatch(batch.effects)

        capture_task.delay.assert_called_once_with("p1")
        notify_task.delay.assert_called_once_with("booking_accepted", "u1", {})

    @patch("marketplace.tasks.notification_tasks.send_notification")
    def test_broker_failure_is_logged(self, notify_task):
        notify_task.delay.side_effect = OperationalError("broker down")
        batch = EffectBatch()
        batch.notify("booking_accepted", "u1")

        CeleryEffectDispatcher().dispatch(batch.effects)

        notify_task.delay.assert_called_once()


class TestBatchLock:
    @patch("marketplace.tasks.locks.get_redis")
    def test_second_holder_is_refused(self, get_redis):
        lock = MagicMock()
        lock.acquire.return_value = False
        get_redis.return_value.lock.return_value = lock

        with batch_lock("job") as acquired:
            assert acquired is False
        lock.release.assert_not_called()

    @patch("marketplace.tasks.locks.get_redis")
    def test_runs_without_redis(self, get_redis):
        get_redis.return_value.lock.side_effect = RedisConnectionError("down")

        with batch_lock("job") as acquired:
            assert acquired is True
