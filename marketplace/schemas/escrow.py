# marketplace/schemas/escrow.py
from decimal import Decimal

from pydantic import BaseModel, Field


class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=20, max_length=1000, description="Why the payment is disputed")


class EarningsResponse(BaseModel):
    provider_id: str
    account_balance: Decimal
    released: Decimal
    in_escrow: Decimal
    awaiting_capture: Decimal
    payments: int

