# marketplace/models/recurring_booking.py
import enum
import uuid

from sqlalchemy import Column, String, Integer, Date, Time, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.models.base import Base


class RecurrenceFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class SeriesStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class RecurringBookingSeries(Base):
    """Booking template expanded into one Booking row per occurrence"""
    __tablename__ = "recurring_booking_series"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Recurrence rule
    frequency = Column(String(20), nullable=False)
    interval = Column(Integer, nullable=False, default=1)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    occurrences = Column(Integer, nullable=True)  # fixed count, 1-52
    days_of_week = Column(JSON, default=list)  # 0=Sunday ... 6=Saturday
    day_of_month = Column(Integer, nullable=True)
    time_slot = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    notes = Column(String(500), nullable=True)

    status = Column(String(20), default=SeriesStatus.ACTIVE.value, nullable=False, index=True)

    # Rolling horizon: occurrences are materialized up to and including this date
    materialized_until = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    bookings = relationship("Booking", back_populates="series", order_by="Booking.booking_date")

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None and self.occurrences is None
