# marketplace/services/policy/exception_rules.py
"""
Policy exception conditions.

Conditions are stored as a JSON list of tagged objects and parsed into the
pydantic models below; ``matches`` interprets them against an
``ExceptionContext``. Unknown kinds are rejected when the policy is saved.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Any, Callable, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from marketplace.core.exceptions import ValidationError
from marketplace.utils.time_utils import ensure_utc


class ProviderInitiatedCondition(BaseModel):
    """Waive the penalty when the provider is the one cancelling / rescheduling"""
    kind: Literal["provider_initiated"] = "provider_initiated"


class GracePeriodCondition(BaseModel):
    """Waive the penalty when the booking was made less than ``hours`` ago"""
    kind: Literal["grace_period"] = "grace_period"
    hours: int = Field(..., gt=0, le=168)


class ReasonCodeCondition(BaseModel):
    """Waive the penalty for listed reason codes (e.g. medical, weather)"""
    kind: Literal["reason_code"] = "reason_code"
    codes: List[str] = Field(..., min_length=1)


class FirstCancellationCondition(BaseModel):
    """Waive the penalty on the customer's first cancellation with this provider"""
    kind: Literal["first_cancellation"] = "first_cancellation"
    lookback_days: int = Field(default=365, gt=0)


ExceptionCondition = Annotated[
    Union[ProviderInitiatedCondition, GracePeriodCondition, ReasonCodeCondition, FirstCancellationCondition],
    Field(discriminator="kind"),
]

_conditions_adapter = TypeAdapter(List[ExceptionCondition])


def parse_conditions(raw: Optional[List[Any]]) -> List[ExceptionCondition]:
    if not raw:
        return []
    try:
        return _conditions_adapter.validate_python(raw)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid exception_conditions", {"errors": errors}) from e


def dump_conditions(conditions: List[ExceptionCondition]) -> List[dict]:
    return [c.model_dump() for c in conditions]


@dataclass
class ExceptionContext:
    """Facts about the action being evaluated"""
    booking: Any
    now: datetime
    actor_id: Optional[UUID] = None
    reason_code: Optional[str] = None
    # Lazily counts the customer's earlier cancellations with the provider since a cutoff
    count_prior_cancellations: Optional[Callable[[datetime], int]] = None


def matches(condition: ExceptionCondition, ctx: ExceptionContext) -> bool:
    if isinstance(condition, ProviderInitiatedCondition):
        return ctx.actor_id is not None and ctx.actor_id == ctx.booking.provider_id

    if isinstance(condition, GracePeriodCondition):
        created_at = ensure_utc(ctx.booking.created_at)
        if created_at is None:
            return False
        return ctx.now - created_at <= timedelta(hours=condition.hours)

    if isinstance(condition, ReasonCodeCondition):
        return ctx.reason_code is not None and ctx.reason_code in condition.codes

    if isinstance(condition, FirstCancellationCondition):
        if ctx.count_prior_cancellations is None:
            return False
        return ctx.count_prior_cancellations(ctx.now - timedelta(days=condition.lookback_days)) == 0

    raise ValidationError(f"Unsupported exception condition: {condition!r}")


def first_match(conditions: List[ExceptionCondition], ctx: ExceptionContext) -> Optional[ExceptionCondition]:
    for condition in conditions:
        if matches(condition, ctx):
            return condition
    return None
