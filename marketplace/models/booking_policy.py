# marketplace/models/booking_policy.py
import enum
import uuid

from sqlalchemy import Column, String, Integer, Text, Boolean, Numeric, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.models.base import Base


class PolicyType(str, enum.Enum):
    CANCELLATION = "cancellation"
    RESCHEDULING = "rescheduling"
    NO_SHOW = "no-show"


class PenaltyType(str, enum.Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class BookingPolicy(Base):
    """Service-level rule gating cancellation, rescheduling and no-show penalties"""
    __tablename__ = "booking_policies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)

    hours_before_booking = Column(Integer, nullable=False, default=24)
    penalty_type = Column(String(20), nullable=False, default=PenaltyType.NONE.value)
    penalty_value = Column(Numeric(10, 2), nullable=False, default=0)

    # Typed exception conditions, see services/policy/exceptions.py
    allow_exceptions = Column(Boolean, default=False, nullable=False)
    exception_conditions = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    service = relationship("Service", back_populates="policies")
