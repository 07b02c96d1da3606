# ===== marketplace/models/availability.py =====
from sqlalchemy import (
    CheckConstraint, Column, Integer, Boolean, Time, Date, DateTime, ForeignKey, UniqueConstraint, Index, Uuid
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from marketplace.models.base import Base
import uuid


class AvailabilityWindow(Base):
    """Provider-defined recurring weekly availability"""
    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint(
            "provider_id", "day_of_week", "start_time", "end_time",
            name="uq_availability_provider_day_range"
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_range"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    day_of_week = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TimeSlot(Base):
    """Materialized bookable unit derived from availability (regenerable cache)"""
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", "start_time", name="uq_time_slots_provider_date_start"),
        Index("ix_time_slots_provider_date", "provider_id", "date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    availability_id = Column(
        Uuid(as_uuid=True), ForeignKey("availability_windows.id", ondelete="SET NULL"), nullable=True
    )

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    is_booked = Column(Boolean, default=False, nullable=False)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    booking = relationship("Booking", foreign_keys=[booking_id])
