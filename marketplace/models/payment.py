# marketplace/models/payment.py
import enum
import uuid

from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from marketplace.models.base import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CAPTURING = "capturing"
    PAID = "paid"
    FAILED = "failed"
    VOIDED = "voided"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, unique=True)

    amount = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    net_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(30), default=PaymentStatus.PENDING.value, nullable=False, index=True)

    # Gateway bookkeeping (results only, never protocol details)
    transaction_id = Column(String(255), nullable=True)
    refund_id = Column(String(255), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    last_gateway_error = Column(Text, nullable=True)

    # Escrow (written by EscrowService only)
    escrow_release_date = Column(DateTime(timezone=True), nullable=True, index=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    dispute_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="payment")
