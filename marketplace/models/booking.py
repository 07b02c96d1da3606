# marketplace/models/booking.py
import enum
import uuid

from sqlalchemy import (
    Column, String, Integer, Text, Date, Time, DateTime, Boolean, Numeric, ForeignKey, Index, Uuid, text
)
from sqlalchemy.orm import relationship

from marketplace.models.base import Base
from marketplace.utils.time_utils import utcnow, combine_utc


class BookingStatus(str, enum.Enum):
    """Booking lifecycle states"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that occupy the provider's calendar
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS)
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.DECLINED, BookingStatus.CANCELLED)

_active_clause = text("status IN ('pending', 'accepted', 'in_progress')")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # Race backstop: two active bookings can never share a provider start time
        Index(
            "uq_bookings_provider_active_start",
            "provider_id", "booking_date", "start_time",
            unique=True,
            postgresql_where=_active_clause,
            sqlite_where=_active_clause,
        ),
        Index("ix_bookings_provider_date", "provider_id", "booking_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # References
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False, index=True)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    recurring_series_id = Column(
        Uuid(as_uuid=True), ForeignKey("recurring_booking_series.id"), nullable=True, index=True
    )

    # Schedule (wall-clock UTC)
    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Money
    price = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    penalty_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # Status tracking
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    is_no_show = Column(Boolean, default=False, nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(Uuid(as_uuid=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    service = relationship("Service")
    customer = relationship("User", foreign_keys=[customer_id])
    provider = relationship("User", foreign_keys=[provider_id])
    payment = relationship("Payment", back_populates="booking", uselist=False)
    series = relationship("RecurringBookingSeries", back_populates="bookings")

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, date={self.booking_date} {self.start_time})>"

    @property
    def starts_at(self):
        return combine_utc(self.booking_date, self.start_time)

    @property
    def ends_at(self):
        return combine_utc(self.booking_date, self.end_time)

    def is_party(self, user_id) -> bool:
        return user_id in (self.customer_id, self.provider_id)
