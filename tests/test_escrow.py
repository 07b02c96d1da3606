"""Tests for escrow scheduling, release and disputes."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import NOW, book
from marketplace.core.exceptions import AuthorizationError, ConflictError, NotFoundError, PolicyViolationError
from marketplace.models import PaymentStatus
from marketplace.services.escrow.escrow_service import EscrowService
from marketplace.utils.time_utils import ensure_utc

# Default booking runs Tuesday 10:00-11:00; completed half an hour later
COMPLETED_AT = datetime(2030, 1, 8, 11, 30, tzinfo=timezone.utc)
RELEASE_AT = COMPLETED_AT + timedelta(days=15)


@pytest.fixture
def escrow(db, dispatcher):
    return EscrowService(db, dispatcher)


@pytest.fixture
def completed(db, provider, customer, service, booking_service):
    """A captured and completed booking"""
    booking = book(booking_service, customer, service)
    booking_service.accept_booking(booking.id, provider.id, now=NOW)
    booking.payment.status = PaymentStatus.PAID.value
    booking.payment.transaction_id = "txn_1"
    db.commit()
    return booking_service.complete_booking(booking.id, provider.id, now=COMPLETED_AT)


class TestFees:
    def test_default_split(self):
        assert EscrowService.calculate_fees(Decimal("100.00"), 10) == (Decimal("10.00"), Decimal("90.00"))

    def test_rounds_to_cents(self):
        fee, net = EscrowService.calculate_fees(Decimal("33.33"), 10)

        assert fee == Decimal("3.33")
        assert net == Decimal("30.00")


class TestScheduling:
    def test_accept_sets_tentative_date(self, provider, customer, service, booking_service):
        booking = book(booking_service, customer, service)

        accepted = booking_service.accept_booking(booking.id, provider.id, now=NOW)

        assert ensure_utc(accepted.payment.escrow_release_date) == accepted.ends_at + timedelta(days=15)

    def test_completion_restarts_holding_period(self, completed):
        assert ensure_utc(completed.payment.escrow_release_date) == RELEASE_AT

    def test_on_completion_schedules_release(self, db, escrow, completed):
        completed.payment.escrow_release_date = None
        db.commit()

        payment = escrow.on_completion(completed.id)

        assert ensure_utc(payment.escrow_release_date) == RELEASE_AT

    def test_on_completion_requires_completed_booking(self, escrow, provider, customer, service, booking_service):
        booking = book(booking_service, customer, service)
        booking_service.accept_booking(booking.id, provider.id, now=NOW)

        with pytest.raises(PolicyViolationError):
            escrow.on_completion(booking.id)

    def test_on_completion_unknown_booking(self, escrow):
        with pytest.raises(NotFoundError):
            escrow.on_completion(uuid.uuid4())


class TestRelease:
    def test_not_before_release_date(self, escrow, completed):
        with pytest.raises(PolicyViolationError):
            escrow.on_release_due(completed.payment.id, now=RELEASE_AT - timedelta(hours=1))

    def test_releases_net_amount_to_provider(self, db, escrow, provider, completed, dispatcher):
        payment = escrow.on_release_due(completed.payment.id, now=RELEASE_AT)

        db.refresh(provider)
        assert ensure_utc(payment.released_at) == RELEASE_AT
        assert provider.account_balance == Decimal("90.00")
        assert dispatcher.events()[-1] == "funds_available"

    def test_second_release_is_rejected(self, db, escrow, provider, completed):
        escrow.on_release_due(completed.payment.id, now=RELEASE_AT)

        with pytest.raises(ConflictError):
            escrow.on_release_due(completed.payment.id, now=RELEASE_AT + timedelta(days=1))

        db.refresh(provider)
        assert provider.account_balance == Decimal("90.00")

    def test_unpaid_payment_is_not_released(self, db, escrow, completed):
        completed.payment.status = PaymentStatus.PENDING.value
        db.commit()

        with pytest.raises(PolicyViolationError):
            escrow.on_release_due(completed.payment.id, now=RELEASE_AT)

    def test_booking_must_be_completed(self, db, escrow, provider, customer, service, booking_service):
        booking = booking_service.accept_booking(book(booking_service, customer, service).id, provider.id, now=NOW)
        booking.payment.status = PaymentStatus.PAID.value
        db.commit()

        with pytest.raises(PolicyViolationError):
            escrow.on_release_due(booking.payment.id, now=RELEASE_AT)

    def test_batch_releases_only_due_payments(self, db, escrow, provider, completed):
        assert escrow.process_due_releases(now=RELEASE_AT - timedelta(days=1))["processed"] == 0

        results = escrow.process_due_releases(now=RELEASE_AT)
        assert results == {"processed": 1, "released": 1, "skipped": 0, "errors": 0}

        assert escrow.process_due_releases(now=RELEASE_AT + timedelta(days=1))["processed"] == 0


class TestDisputes:
    def test_freeze_extends_release_date(self, escrow, customer, completed, dispatcher):
        payment = escrow.freeze(completed.payment.id, customer.id, "Service was not delivered as agreed",
                                now=COMPLETED_AT + timedelta(days=1))

        assert ensure_utc(payment.escrow_release_date) == RELEASE_AT + timedelta(days=30)
        assert payment.dispute_reason == "Service was not delivered as agreed"
        assert dispatcher.events()[-1] == "payment_disputed"

        with pytest.raises(PolicyViolationError):
            escrow.on_release_due(payment.id, now=RELEASE_AT)

    def test_stranger_cannot_dispute(self, escrow, other_customer, completed):
        with pytest.raises(AuthorizationError):
            escrow.freeze(completed.payment.id, other_customer.id, "I want my money back", now=COMPLETED_AT)

    def test_released_payment_cannot_be_disputed(self, escrow, customer, completed):
        escrow.on_release_due(completed.payment.id, now=RELEASE_AT)

        with pytest.raises(ConflictError):
            escrow.freeze(completed.payment.id, customer.id, "Too late for this one", now=RELEASE_AT)


class TestEarnings:
    def test_summary(self, escrow, provider, customer, service, booking_service, completed):
        book(booking_service, customer, service, at=NOW.replace(hour=14).time())

        summary = escrow.get_provider_earnings(provider.id)
        assert summary["in_escrow"] == Decimal("90.00")
        assert summary["awaiting_capture"] == Decimal("90.00")
        assert summary["released"] == Decimal("0.00")
        assert summary["payments"] == 2

        escrow.on_release_due(completed.payment.id, now=RELEASE_AT)
        summary = escrow.get_provider_earnings(provider.id)
        assert summary["released"] == Decimal("90.00")
        assert summary["account_balance"] == Decimal("90.00")
