"""Tests for the policy engine, exception conditions and policy management."""
from datetime import date, time, timedelta
from decimal import Decimal

import pytest

from conftest import NOW, add_policy, book, make_user
from marketplace.config.settings import Settings
from marketplace.core.exceptions import AuthorizationError, ValidationError
from marketplace.models import BookingStatus
from marketplace.services.policy.exception_rules import (
    GracePeriodCondition, ReasonCodeCondition, parse_conditions
)
from marketplace.services.policy.policy_service import (
    PolicyService, compute_penalty, validate_policy_values
)


@pytest.fixture
def policies(db):
    return PolicyService(db)


@pytest.fixture
def late_booking(customer, service, booking_service):
    """Starts 10 hours after NOW."""
    return book(booking_service, customer, service, on=NOW.date(), at=time(19, 0))


class TestPenaltyMath:
    def test_percentage(self):
        assert compute_penalty("percentage", Decimal("25"), Decimal("80.00")) == Decimal("20.00")

    def test_fixed_is_capped_at_total(self):
        assert compute_penalty("fixed", Decimal("30"), Decimal("100")) == Decimal("30.00")
        assert compute_penalty("fixed", Decimal("150"), Decimal("100")) == Decimal("100.00")

    def test_none(self):
        assert compute_penalty("none", Decimal("50"), Decimal("100")) == Decimal("0.00")

    @pytest.mark.parametrize("penalty_type,value", [
        ("percentage", Decimal("150")),
        ("percentage", Decimal("0")),
        ("fixed", Decimal("-5")),
        ("bogus", Decimal("10")),
    ])
    def test_invalid_values(self, penalty_type, value):
        with pytest.raises(ValidationError):
            validate_policy_values(penalty_type, value, 24)


class TestEvaluate:
    def test_outside_threshold_is_free(self, db, policies, customer, service, booking_service):
        add_policy(db, service)
        booking = book(booking_service, customer, service, on=date(2030, 1, 8), at=time(15, 0))

        decision = policies.evaluate(booking.id, "cancellation", now=NOW)

        assert decision.allowed
        assert decision.penalty == Decimal("0")
        assert decision.hours_until == 30.0

    def test_inside_threshold_charges_penalty(self, db, policies, service, late_booking):
        policy = add_policy(db, service)

        decision = policies.evaluate(late_booking.id, "cancellation", now=NOW)

        assert decision.allowed
        assert decision.penalty == Decimal("50.00")
        assert decision.policy_id == policy.id

    def test_fractional_hours_count(self, db, policies, service, late_booking):
        add_policy(db, service, hours_before_booking=10)

        just_in_time = policies.evaluate(late_booking.id, "cancellation", now=NOW)
        one_minute_late = policies.evaluate(late_booking.id, "cancellation", now=NOW + timedelta(minutes=1))

        assert just_in_time.penalty == Decimal("0")
        assert one_minute_late.penalty == Decimal("50.00")

    def test_no_policy_uses_service_threshold_without_penalty(self, policies, late_booking):
        decision = policies.evaluate(late_booking.id, "cancellation", now=NOW)

        assert decision.allowed
        assert decision.penalty == Decimal("0")
        assert decision.policy_id is None

    def test_cancelled_booking_is_not_allowed(self, db, policies, late_booking):
        late_booking.status = BookingStatus.CANCELLED.value
        db.commit()

        decision = policies.evaluate(late_booking.id, "cancellation", now=NOW)

        assert decision.allowed is False
        assert decision.penalty == Decimal("0")

    def test_hard_block(self, db, service, late_booking):
        add_policy(db, service)
        strict = PolicyService(db, Settings(POLICY_HARD_BLOCK=True))

        decision = strict.evaluate(late_booking.id, "cancellation", now=NOW)

        assert decision.allowed is False

    def test_no_show_defaults_to_full_price(self, policies, late_booking):
        decision = policies.evaluate(late_booking.id, "no-show", now=NOW)

        assert decision.penalty == Decimal("100.00")

    def test_no_show_none_policy_still_full_price(self, db, policies, service, late_booking):
        add_policy(db, service, type="no-show", penalty_type="none", penalty_value=Decimal("0"))

        assert policies.evaluate(late_booking.id, "no-show", now=NOW).penalty == Decimal("100.00")

    def test_no_show_policy_percentage(self, db, policies, service, late_booking):
        add_policy(db, service, type="no-show", penalty_value=Decimal("40"))

        assert policies.evaluate(late_booking.id, "no-show", now=NOW).penalty == Decimal("40.00")

    def test_reschedule_into_past_not_allowed(self, policies, late_booking):
        decision = policies.evaluate(
            late_booking.id, "rescheduling", new_date=NOW.date() - timedelta(days=1), now=NOW
        )
        assert decision.allowed is False


class TestExceptions:
    def test_reason_code_waives_penalty(self, db, policies, customer, service, late_booking):
        add_policy(db, service, allow_exceptions=True,
                   exception_conditions=[{"kind": "reason_code", "codes": ["medical"]}])

        waived = policies.evaluate(late_booking.id, "cancellation", actor_id=customer.id,
                                   reason_code="medical", now=NOW)
        charged = policies.evaluate(late_booking.id, "cancellation", actor_id=customer.id,
                                    reason_code="changed_mind", now=NOW)

        assert waived.penalty == Decimal("0")
        assert waived.waived_by == "reason_code"
        assert charged.penalty == Decimal("50.00")

    def test_exceptions_ignored_unless_allowed(self, db, policies, customer, service, late_booking):
        add_policy(db, service, allow_exceptions=False,
                   exception_conditions=[{"kind": "reason_code", "codes": ["medical"]}])

        decision = policies.evaluate(late_booking.id, "cancellation", actor_id=customer.id,
                                     reason_code="medical", now=NOW)

        assert decision.penalty == Decimal("50.00")

    def test_provider_initiated(self, db, policies, provider, customer, service, late_booking):
        add_policy(db, service, allow_exceptions=True, exception_conditions=[{"kind": "provider_initiated"}])

        assert policies.evaluate(late_booking.id, "cancellation", actor_id=provider.id, now=NOW).penalty == 0
        assert policies.evaluate(late_booking.id, "cancellation", actor_id=customer.id, now=NOW).penalty > 0

    def test_grace_period(self, db, policies, service, late_booking):
        add_policy(db, service, allow_exceptions=True,
                   exception_conditions=[{"kind": "grace_period", "hours": 2}])
        late_booking.created_at = NOW - timedelta(hours=1)
        db.commit()

        assert policies.evaluate(late_booking.id, "cancellation", now=NOW).waived_by == "grace_period"
        assert policies.evaluate(late_booking.id, "cancellation", now=NOW + timedelta(hours=3)).penalty > 0

    def test_first_cancellation(self, db, policies, customer, service, booking_service):
        add_policy(db, service, allow_exceptions=True,
                   exception_conditions=[{"kind": "first_cancellation"}])
        first = book(booking_service, customer, service, on=NOW.date(), at=time(17, 0))
        second = book(booking_service, customer, service, on=NOW.date(), at=time(19, 0))

        _, decision = booking_service.cancel_booking(first.id, customer.id, now=NOW)
        assert decision.waived_by == "first_cancellation"

        _, decision = booking_service.cancel_booking(second.id, customer.id, now=NOW)
        assert decision.penalty == Decimal("50.00")

    def test_parse_conditions(self):
        conditions = parse_conditions([
            {"kind": "grace_period", "hours": 4},
            {"kind": "reason_code", "codes": ["weather"]},
        ])

        assert isinstance(conditions[0], GracePeriodCondition)
        assert isinstance(conditions[1], ReasonCodeCondition)

    @pytest.mark.parametrize("raw", [
        [{"kind": "full_moon"}],
        [{"kind": "grace_period"}],
        [{"kind": "reason_code", "codes": []}],
    ])
    def test_invalid_conditions(self, raw):
        with pytest.raises(ValidationError):
            parse_conditions(raw)


class TestPolicyManagement:
    def test_create_and_list(self, policies, provider, service):
        policy = policies.create_policy(provider.id, {
            "service_id": service.id,
            "name": "Strict",
            "type": "cancellation",
            "hours_before_booking": 48,
            "penalty_type": "fixed",
            "penalty_value": Decimal("30"),
            "allow_exceptions": True,
            "exception_conditions": [{"kind": "reason_code", "codes": ["medical"]}],
        })

        assert policy.exception_conditions == [{"kind": "reason_code", "codes": ["medical"]}]
        assert [p.id for p in policies.list_policies(service.id)] == [policy.id]

    def test_only_owner_can_create(self, db, policies, service):
        stranger = make_user(db, "stranger@example.com", professional=True)

        with pytest.raises(AuthorizationError):
            policies.create_policy(stranger.id, {
                "service_id": service.id, "name": "Mine now", "type": "cancellation",
            })

    def test_percentage_over_100_rejected(self, policies, provider, service):
        with pytest.raises(ValidationError):
            policies.create_policy(provider.id, {
                "service_id": service.id, "name": "Greedy", "type": "cancellation",
                "penalty_type": "percentage", "penalty_value": 120,
            })

    def test_update_and_deactivate(self, db, policies, provider, service):
        policy = add_policy(db, service)

        updated = policies.update_policy(policy.id, provider.id, {"penalty_value": Decimal("25")})
        assert updated.penalty_value == Decimal("25.00")

        policies.deactivate_policy(policy.id, provider.id)
        assert policies.list_policies(service.id) == []
        assert len(policies.list_policies(service.id, include_inactive=True)) == 1

    def test_templates(self):
        templates = PolicyService.policy_templates()

        assert {t["type"] for t in templates} == {"cancellation", "rescheduling", "no-show"}
        standard = next(t for t in templates if t["name"] == "Standard cancellation")
        assert standard["hours_before_booking"] == 24
        assert standard["penalty_value"] == Decimal("50")
