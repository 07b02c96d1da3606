# ============================================================================
# marketplace/services/policy/policy_service.py
# Cancellation / rescheduling / no-show evaluation and policy management
# ============================================================================
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings, get_settings
from marketplace.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.booking_policy import BookingPolicy, PenaltyType, PolicyType
from marketplace.models.service import Service
from marketplace.services.policy.exception_rules import (
    ExceptionContext, dump_conditions, first_match, parse_conditions
)
from marketplace.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# Ready-made policies offered to providers when configuring a service
POLICY_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Standard cancellation",
        "description": "Free cancellation up to 24 hours before the booking, 50% charge after that.",
        "type": PolicyType.CANCELLATION.value,
        "hours_before_booking": 24,
        "penalty_type": PenaltyType.PERCENTAGE.value,
        "penalty_value": Decimal("50"),
    },
    {
        "name": "Flexible cancellation",
        "description": "Free cancellation up to 2 hours before the booking.",
        "type": PolicyType.CANCELLATION.value,
        "hours_before_booking": 2,
        "penalty_type": PenaltyType.NONE.value,
        "penalty_value": Decimal("0"),
    },
    {
        "name": "Standard rescheduling",
        "description": "Free rescheduling up to 12 hours before the booking.",
        "type": PolicyType.RESCHEDULING.value,
        "hours_before_booking": 12,
        "penalty_type": PenaltyType.NONE.value,
        "penalty_value": Decimal("0"),
    },
    {
        "name": "No-show",
        "description": "Full charge when the customer does not show up.",
        "type": PolicyType.NO_SHOW.value,
        "hours_before_booking": 0,
        "penalty_type": PenaltyType.PERCENTAGE.value,
        "penalty_value": Decimal("100"),
    },
]


@dataclass
class PolicyDecision:
    allowed: bool
    penalty: Decimal = Decimal("0.00")
    reason: Optional[str] = None
    policy_id: Optional[UUID] = None
    hours_until: Optional[float] = None
    waived_by: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "penalty": str(self.penalty),
            "reason": self.reason,
            "policy_id": str(self.policy_id) if self.policy_id else None,
            "hours_until": self.hours_until,
            "waived_by": self.waived_by,
        }


def compute_penalty(penalty_type: str, penalty_value: Decimal, total: Decimal) -> Decimal:
    """percentage -> total * value / 100; fixed -> min(value, total); none -> 0"""
    total = Decimal(total)
    value = Decimal(penalty_value or 0)

    if penalty_type == PenaltyType.PERCENTAGE.value:
        penalty = total * value / Decimal(100)
    elif penalty_type == PenaltyType.FIXED.value:
        penalty = min(value, total)
    else:
        penalty = Decimal(0)

    return penalty.quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_policy_values(penalty_type: str, penalty_value: Decimal, hours_before_booking: int) -> None:
    if penalty_type not in {p.value for p in PenaltyType}:
        raise ValidationError(f"Unknown penalty_type: {penalty_type}")
    if hours_before_booking is not None and hours_before_booking < 0:
        raise ValidationError("hours_before_booking cannot be negative")

    value = Decimal(penalty_value or 0)
    if penalty_type == PenaltyType.NONE.value:
        return
    if value <= 0:
        raise ValidationError("penalty_value must be positive")
    if penalty_type == PenaltyType.PERCENTAGE.value and value > 100:
        raise ValidationError("Percentage penalty cannot exceed 100")


class PolicyService:
    """PolicyEngine: decides whether an action is allowed and what it costs"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
            self,
            booking_id: UUID,
            policy_type: str,
            new_date: Optional[date] = None,
            actor_id: Optional[UUID] = None,
            reason_code: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> PolicyDecision:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError("Booking not found", {"booking_id": str(booking_id)})
        return self.evaluate_booking(booking, policy_type, new_date, actor_id, reason_code, now)

    def evaluate_booking(
            self,
            booking: Booking,
            policy_type: str,
            new_date: Optional[date] = None,
            actor_id: Optional[UUID] = None,
            reason_code: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> PolicyDecision:
        """Evaluate against an already loaded (and possibly locked) booking"""
        now = ensure_utc(now) or utcnow()
        policy_type = PolicyType(policy_type).value

        if booking.status == BookingStatus.CANCELLED.value:
            return PolicyDecision(allowed=False, reason="Booking is already cancelled")
        if booking.status in (BookingStatus.COMPLETED.value, BookingStatus.DECLINED.value):
            return PolicyDecision(allowed=False, reason=f"Booking is already {booking.status}")

        policy = self._active_policy(booking.service_id, policy_type)
        total = Decimal(booking.total_amount)

        if policy_type == PolicyType.NO_SHOW.value:
            return self._evaluate_no_show(booking, policy, total, actor_id, reason_code, now)

        if policy_type == PolicyType.RESCHEDULING.value and new_date is not None and new_date < now.date():
            return PolicyDecision(allowed=False, reason="Cannot reschedule to a date in the past")

        hours_until = (booking.starts_at - now).total_seconds() / 3600.0

        if policy:
            threshold = policy.hours_before_booking
        else:
            threshold = self._default_threshold(booking, policy_type)

        if hours_until >= threshold:
            return PolicyDecision(
                allowed=True,
                reason=f"{policy_type.capitalize()} allowed without penalty",
                policy_id=policy.id if policy else None,
                hours_until=round(hours_until, 2),
            )

        if policy is None:
            # No explicit policy: the service threshold still applies but carries no penalty
            return self._below_threshold(None, Decimal(0), threshold, hours_until, policy_type)

        penalty = compute_penalty(policy.penalty_type, policy.penalty_value, total)

        waiver = self._matching_exception(policy, booking, actor_id, reason_code, now)
        if waiver:
            logger.info(f"Policy {policy.id} penalty waived for booking {booking.id} ({waiver})")
            return PolicyDecision(
                allowed=True,
                reason=f"Penalty waived by {waiver} exception",
                policy_id=policy.id,
                hours_until=round(hours_until, 2),
                waived_by=waiver,
            )

        return self._below_threshold(policy, penalty, threshold, hours_until, policy_type)

    def _below_threshold(self, policy, penalty, threshold, hours_until, policy_type) -> PolicyDecision:
        if self.settings.POLICY_HARD_BLOCK:
            return PolicyDecision(
                allowed=False,
                reason=f"{policy_type.capitalize()} requires at least {threshold} hours notice",
                policy_id=policy.id if policy else None,
                hours_until=round(hours_until, 2),
            )

        reason = f"Less than {threshold} hours notice"
        if penalty > 0:
            reason += f", penalty of {penalty} applies"
        return PolicyDecision(
            allowed=True,
            penalty=penalty,
            reason=reason,
            policy_id=policy.id if policy else None,
            hours_until=round(hours_until, 2),
        )

    def _evaluate_no_show(self, booking, policy, total, actor_id, reason_code, now) -> PolicyDecision:
        # Default (no policy, or a "none" policy) charges the full price
        if policy is None or policy.penalty_type == PenaltyType.NONE.value:
            return PolicyDecision(
                allowed=True,
                penalty=total.quantize(CENTS),
                reason="No-show charged at full price",
                policy_id=policy.id if policy else None,
            )

        waiver = self._matching_exception(policy, booking, actor_id, reason_code, now)
        if waiver:
            return PolicyDecision(
                allowed=True,
                reason=f"No-show penalty waived by {waiver} exception",
                policy_id=policy.id,
                waived_by=waiver,
            )

        penalty = compute_penalty(policy.penalty_type, policy.penalty_value, total)
        return PolicyDecision(
            allowed=True,
            penalty=penalty,
            reason=f"No-show penalty of {penalty} applies",
            policy_id=policy.id,
        )

    def _default_threshold(self, booking: Booking, policy_type: str) -> int:
        service = booking.service
        if policy_type == PolicyType.CANCELLATION.value:
            if service and service.cancellation_hours is not None:
                return service.cancellation_hours
            return self.settings.DEFAULT_CANCELLATION_HOURS
        if service and service.rescheduling_hours is not None:
            return service.rescheduling_hours
        return self.settings.DEFAULT_RESCHEDULING_HOURS

    def _active_policy(self, service_id: UUID, policy_type: str) -> Optional[BookingPolicy]:
        return self.db.query(BookingPolicy).filter(
            BookingPolicy.service_id == service_id,
            BookingPolicy.type == policy_type,
            BookingPolicy.is_active == True  # noqa: E712
        ).order_by(BookingPolicy.created_at.desc()).first()

    def _matching_exception(self, policy, booking, actor_id, reason_code, now) -> Optional[str]:
        if not policy.allow_exceptions or not policy.exception_conditions:
            return None

        def count_prior_cancellations(since: datetime) -> int:
            return self.db.query(func.count(Booking.id)).filter(
                Booking.customer_id == booking.customer_id,
                Booking.provider_id == booking.provider_id,
                Booking.id != booking.id,
                Booking.status == BookingStatus.CANCELLED.value,
                Booking.cancelled_by == booking.customer_id,
                Booking.cancelled_at >= since,
            ).scalar() or 0

        ctx = ExceptionContext(
            booking=booking,
            now=now,
            actor_id=actor_id,
            reason_code=reason_code,
            count_prior_cancellations=count_prior_cancellations,
        )
        condition = first_match(parse_conditions(policy.exception_conditions), ctx)
        return condition.kind if condition else None

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def _owned_service(self, service_id: UUID, provider_id: UUID) -> Service:
        service = self.db.query(Service).filter(Service.id == service_id).first()
        if not service:
            raise NotFoundError("Service not found", {"service_id": str(service_id)})
        if service.provider_id != provider_id:
            raise AuthorizationError("Only the service provider can manage its policies")
        return service

    def _owned_policy(self, policy_id: UUID, provider_id: UUID) -> BookingPolicy:
        policy = self.db.query(BookingPolicy).filter(BookingPolicy.id == policy_id).first()
        if not policy:
            raise NotFoundError("Policy not found", {"policy_id": str(policy_id)})
        self._owned_service(policy.service_id, provider_id)
        return policy

    def create_policy(self, provider_id: UUID, data: Dict[str, Any]) -> BookingPolicy:
        self._owned_service(data["service_id"], provider_id)

        policy_type = PolicyType(data["type"]).value
        penalty_type = data.get("penalty_type", PenaltyType.NONE.value)
        penalty_value = Decimal(str(data.get("penalty_value", 0)))
        hours = data.get("hours_before_booking", self.settings.DEFAULT_CANCELLATION_HOURS)
        validate_policy_values(penalty_type, penalty_value, hours)

        conditions = parse_conditions(data.get("exception_conditions"))

        policy = BookingPolicy(
            service_id=data["service_id"],
            name=data["name"],
            description=data.get("description"),
            type=policy_type,
            hours_before_booking=hours,
            penalty_type=penalty_type,
            penalty_value=penalty_value,
            allow_exceptions=data.get("allow_exceptions", False),
            exception_conditions=dump_conditions(conditions) or None,
            is_active=True,
        )
        self.db.add(policy)
        self.db.commit()
        self.db.refresh(policy)

        logger.info(f"Policy {policy.id} ({policy_type}) created for service {policy.service_id}")
        return policy

    def list_policies(self, service_id: UUID, include_inactive: bool = False) -> List[BookingPolicy]:
        query = self.db.query(BookingPolicy).filter(BookingPolicy.service_id == service_id)
        if not include_inactive:
            query = query.filter(BookingPolicy.is_active == True)  # noqa: E712
        return query.order_by(BookingPolicy.type, BookingPolicy.created_at).all()

    def update_policy(self, policy_id: UUID, provider_id: UUID, updates: Dict[str, Any]) -> BookingPolicy:
        policy = self._owned_policy(policy_id, provider_id)

        penalty_type = updates.get("penalty_type", policy.penalty_type)
        penalty_value = Decimal(str(updates.get("penalty_value", policy.penalty_value)))
        hours = updates.get("hours_before_booking", policy.hours_before_booking)
        validate_policy_values(penalty_type, penalty_value, hours)

        for key in ("name", "description", "allow_exceptions", "is_active"):
            if key in updates and updates[key] is not None:
                setattr(policy, key, updates[key])
        if "exception_conditions" in updates:
            conditions = parse_conditions(updates["exception_conditions"])
            policy.exception_conditions = dump_conditions(conditions) or None

        policy.penalty_type = penalty_type
        policy.penalty_value = penalty_value
        policy.hours_before_booking = hours

        self.db.commit()
        self.db.refresh(policy)
        return policy

    def deactivate_policy(self, policy_id: UUID, provider_id: UUID) -> BookingPolicy:
        policy = self._owned_policy(policy_id, provider_id)
        policy.is_active = False
        self.db.commit()
        self.db.refresh(policy)
        logger.info(f"Policy {policy_id} deactivated")
        return policy

    @staticmethod
    def policy_templates() -> List[Dict[str, Any]]:
        return [dict(t) for t in POLICY_TEMPLATES]
