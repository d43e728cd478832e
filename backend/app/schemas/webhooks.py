"""
Provider webhook payloads.
"""

from pydantic import BaseModel, EmailStr, Field
from decimal import Decimal
from typing import Optional


class PaymentCompletedPayload(BaseModel):
    """Payment provider "payment completed" event."""
    payment_id: str = Field(..., min_length=1, max_length=255)
    payment_provider: str = Field(..., min_length=1, max_length=50)
    amount_paid: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: str = Field("EUR", min_length=3, max_length=3)
    user_id: int
    credits_granted: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=255)


class PaymentWebhookResponse(BaseModel):
    received: bool
    duplicate: bool
    transaction_id: Optional[int] = None
    invoice_number: Optional[str] = None
    balance: int


class UserSyncPayload(BaseModel):
    """Identity provider user.created / user.updated event."""
    event: str = Field(..., pattern="^user\\.(created|updated)$")
    external_id: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    username: str = Field(..., min_length=1, max_length=100)
    email_verified: bool = False


class UserSyncResponse(BaseModel):
    received: bool
    user_id: Optional[int] = None
    created: bool = False
