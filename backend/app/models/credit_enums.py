"""
Credit ledger enumerations.
"""

import enum


class TransactionType(str, enum.Enum):
    """Kind of balance-changing event recorded in the ledger."""
    PURCHASE = "PURCHASE"  # Credits bought through the payment provider
    DEBIT = "DEBIT"  # Credits spent on a reading or question
    DAILY_BONUS = "DAILY_BONUS"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    ACHIEVEMENT_BONUS = "ACHIEVEMENT_BONUS"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"  # Manual correction by an admin


class PaymentStatus(str, enum.Enum):
    """Payment status carried on PURCHASE transactions."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
