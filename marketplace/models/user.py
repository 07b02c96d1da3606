# ============================================================================
# FILE: marketplace/models/user.py
# Marketplace parties: customers and professionals (providers)
# ============================================================================
from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Uuid
from sqlalchemy.sql import func
import uuid
from marketplace.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    # Professionals offer services and receive escrow releases
    is_professional = Column(Boolean, default=False, nullable=False)
    account_balance = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, professional={self.is_professional})>"
