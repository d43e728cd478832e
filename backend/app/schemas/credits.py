"""
Credit API Schema Definitions.

Pydantic schemas for balance, history, daily bonus, referral and
achievement endpoints.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.credit_enums import TransactionType, PaymentStatus


class BalanceResponse(BaseModel):
    """Current credit balance."""
    user_id: int
    balance: int


class TransactionResponse(BaseModel):
    """Schema for a ledger row in the history view."""
    id: int
    type: TransactionType
    amount: int
    description: Optional[str] = None
    created_at: datetime
    payment_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    invoice_number: Optional[str] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    """Paginated transaction history."""
    transactions: List[TransactionResponse]
    total: int
    limit: int
    offset: int


class DailyBonusStatusResponse(BaseModel):
    """Daily bonus eligibility for today."""
    eligible: bool
    today: date
    last_login_date: Optional[date] = None
    current_streak: int
    next_bonus: int


class UnlockedAchievementResponse(BaseModel):
    achievement_id: str
    reward: int


class DailyBonusClaimResponse(BaseModel):
    """Result of a successful daily bonus claim."""
    awarded: int
    balance: int
    streak: int
    claimed_on: date
    transaction_id: int
    achievements: List[UnlockedAchievementResponse] = []


class RedeemReferralRequest(BaseModel):
    """Schema for redeeming a referral code."""
    code: str = Field(..., min_length=1, max_length=20)


class RedeemReferralResponse(BaseModel):
    success: bool
    message: str
    credits_awarded: int
    new_balance: int


class ReferralStatsResponse(BaseModel):
    referral_code: str
    referred_count: int
    credits_earned: int
    has_redeemed: bool


class AchievementResponse(BaseModel):
    """Catalog entry with the caller's unlock state."""
    id: str
    reward: int
    unlocked: bool
    unlocked_at: Optional[datetime] = None


class AchievementListResponse(BaseModel):
    achievements: List[AchievementResponse]
    unlocked_count: int
    total_count: int


class ShareReadingResponse(BaseModel):
    unlocked: List[UnlockedAchievementResponse]
    balance: int
