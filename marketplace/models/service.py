# marketplace/models/service.py
"""
Service Model - what a provider sells.
Source of truth for price, duration and the default policy thresholds.
"""
from sqlalchemy import Column, String, Numeric, Integer, ForeignKey, Boolean, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from marketplace.models.base import Base


class Service(Base):
    __tablename__ = "services"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Core service details
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)

    # Status: active, inactive
    status = Column(String(20), default="active", nullable=False, index=True)
    allow_recurring = Column(Boolean, default=True, nullable=False)

    # Fallback thresholds used when no explicit BookingPolicy row exists
    cancellation_hours = Column(Integer, nullable=True, default=24)
    rescheduling_hours = Column(Integer, nullable=True, default=24)

    # Minutes kept free on both sides of each booking, and an optional per-day cap
    buffer_minutes = Column(Integer, nullable=False, default=0)
    max_bookings_per_day = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Relationships
    provider = relationship("User")
    policies = relationship("BookingPolicy", back_populates="service")

    def __repr__(self):
        return f"<Service(id={self.id}, title={self.title}, provider_id={self.provider_id})>"

    @property
    def is_bookable(self) -> bool:
        return self.status == "active"

