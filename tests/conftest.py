"""Shared test fixtures and helpers."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List

import pytest
from sqlalchemy.orm import sessionmaker

from marketplace.config.database import build_engine
from marketplace.core.exceptions import GatewayError
from marketplace.models import AvailabilityWindow, Base, BookingPolicy, Service, User
from marketplace.services.booking.booking_service import BookingService
from marketplace.services.booking.effects import NOTIFY, Effect, EffectDispatcher
from marketplace.services.payment.gateway import CaptureResult, PaymentGateway, RefundResult

# Monday 2030-01-07 09:00 UTC; every service call in the suite runs at a fixed "now"
NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


class RecordingDispatcher(EffectDispatcher):
    """Keeps dispatched effects in memory instead of queueing Celery tasks."""

    def __init__(self):
        self.effects: List[Effect] = []

    def dispatch(self, effects: List[Effect]) -> None:
        self.effects.extend(effects)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.effects]

    def events(self) -> List[str]:
        return [e.payload["event"] for e in self.effects if e.kind == NOTIFY]

    def of_kind(self, kind: str) -> List[Effect]:
        return [e for e in self.effects if e.kind == kind]


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


def make_user(db, email: str, professional: bool = False) -> User:
    user = User(email=email, full_name=email.split("@")[0], is_professional=professional)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provider(db):
    return make_user(db, "provider@example.com", professional=True)


@pytest.fixture
def customer(db):
    return make_user(db, "customer@example.com")


@pytest.fixture
def other_customer(db):
    return make_user(db, "other@example.com")


@pytest.fixture
def service(db, provider):
    service = Service(
        provider_id=provider.id,
        title="Deep cleaning",
        price=Decimal("100.00"),
        duration_minutes=60,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


@pytest.fixture
def booking_service(db, dispatcher):
    return BookingService(db, dispatcher)


def add_window(db, provider_id, day_of_week: int, start: time, end: time) -> AvailabilityWindow:
    window = AvailabilityWindow(provider_id=provider_id, day_of_week=day_of_week, start_time=start, end_time=end)
    db.add(window)
    db.commit()
    db.refresh(window)
    return window


def book(booking_service, customer, service, on: date = TUESDAY, at: time = time(10, 0), **kwargs):
    """Create a pending booking at the suite's fixed clock."""
    kwargs.setdefault("now", NOW)
    return booking_service.create_booking(
        customer_id=customer.id,
        service_id=service.id,
        booking_date=on,
        start_time=at,
        **kwargs
    )


def add_policy(db, service, **overrides) -> BookingPolicy:
    """Attach a policy to ``service``; defaults to 24h / 50% cancellation."""
    values = dict(
        service_id=service.id,
        name="Standard cancellation",
        type="cancellation",
        hours_before_booking=24,
        penalty_type="percentage",
        penalty_value=Decimal("50"),
    )
    values.update(overrides)
    policy = BookingPolicy(**values)
    db.add(policy)
    db.commit()
    return policy


class FakeGateway(PaymentGateway):
    """In-memory gateway; ``fail`` makes every call raise GatewayError."""

    def __init__(self, capture_status="paid", fail=False):
        self.capture_status = capture_status
        self.fail = fail
        self.refunds = []

    def capture_payment(self, order_ref, amount):
        if self.fail:
            raise GatewayError("gateway down")
        return CaptureResult(transaction_id=f"txn_{order_ref[:8]}", status=self.capture_status)

    def refund(self, transaction_id, amount):
        if self.fail:
            raise GatewayError("gateway down")
        self.refunds.append((transaction_id, amount))
        return RefundResult(refund_id=f"rf_{len(self.refunds)}")


@pytest.fixture
def accepted(provider, customer, service, booking_service):
    """Tuesday 10:00 booking accepted by the provider, payment not yet captured"""
    booking = book(booking_service, customer, service)
    return booking_service.accept_booking(booking.id, provider.id, now=NOW)
