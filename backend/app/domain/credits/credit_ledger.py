"""
Credit Ledger (Domain Logic).

The single write path for users.credit_balance. Every balance change is one
guarded UPDATE on the user row plus one appended CreditTransaction, inside
the same database transaction, so the balance always equals the sum of the
user's ledger.

Per-user serialization comes from the datastore: the guarded UPDATE takes
the row lock and re-checks `credit_balance >= amount` under it. There is no
read-then-write gap and no in-process mutex.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    BadRequestError,
    InsufficientCreditsError,
    LedgerIntegrityError,
    ResourceNotFoundError,
)
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.models.credit_enums import TransactionType
from backend.app.models.user import User

logger = logging.getLogger(__name__)

# Metadata keys copied onto the transaction row (purchase details)
PAYMENT_FIELDS = ("payment_amount", "currency", "payment_provider", "payment_id", "payment_status")


@dataclass
class LedgerResult:
    """Outcome of a ledger mutation. Callers must check `applied`."""

    applied: bool
    balance: int
    amount: int = 0
    transaction_id: Optional[int] = None
    duplicate: bool = False
    invoice_number: Optional[str] = None


class CreditLedger:

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: int) -> int:
        """
        Current balance read straight from the row.

        Raises:
            ResourceNotFoundError: If the user does not exist
        """
        result = await db.execute(select(User.credit_balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise ResourceNotFoundError("User", user_id)
        return balance

    @staticmethod
    async def debit(
        db: AsyncSession,
        user_id: int,
        amount: int,
        reason: str,
        transaction_type: TransactionType = TransactionType.DEBIT,
        commit: bool = True,
    ) -> LedgerResult:
        """
        Atomically spend credits.

        Flow:
        1. Guarded decrement (`WHERE credit_balance >= amount`)
        2. Zero rows -> roll back, InsufficientCreditsError, nothing written
        3. Append a row with amount = -amount
        4. Commit (unless the caller owns the unit of work)

        Args:
            db: Database session
            user_id: User to debit
            amount: Credits to spend, must be > 0
            reason: Ledger description
            transaction_type: DEBIT, or ADMIN_ADJUSTMENT for manual corrections
            commit: False when enlisted in a larger atomic unit

        Returns:
            LedgerResult with the new balance

        Raises:
            ValueError: If amount <= 0
            InsufficientCreditsError: If the balance does not cover the amount
            ResourceNotFoundError: If the user does not exist
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        try:
            result = await db.execute(
                update(User)
                .where(User.id == user_id, User.credit_balance >= amount)
                .values(credit_balance=User.credit_balance - amount)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                current = await db.execute(select(User.credit_balance).where(User.id == user_id))
                balance = current.scalar_one_or_none()
                # A refused debit fails the whole unit, enlisted or not.
                await db.rollback()
                if balance is None:
                    raise ResourceNotFoundError("User", user_id)
                logger.info(
                    "Debit refused",
                    extra={"user_id": user_id, "amount": amount, "balance": balance}
                )
                raise InsufficientCreditsError(balance=balance, required=amount)

            entry = await TransactionRecorder.append(
                db,
                user_id=user_id,
                transaction_type=transaction_type,
                amount=-amount,
                description=reason,
            )
            new_balance = await CreditLedger.get_balance(db, user_id)

            if commit:
                await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        logger.info(
            "Credits debited",
            extra={"user_id": user_id, "amount": amount, "balance": new_balance, "transaction_id": entry.id}
        )
        return LedgerResult(applied=True, balance=new_balance, amount=-amount, transaction_id=entry.id)

    @staticmethod
    async def credit(
        db: AsyncSession,
        user_id: int,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> LedgerResult:
        """
        Add credits and append the matching ledger row.

        This is the only path by which bonuses, referrals, achievements and
        purchases change a balance. There is no upper bound.

        Args:
            db: Database session
            user_id: User to credit
            amount: Credits to add, must be >= 0
            transaction_type: Source of the credits
            description: Ledger description
            metadata: Purchase details (payment_amount, currency, payment_provider,
                payment_id, payment_status); other keys are ignored
            created_at: Explicit ledger timestamp
            commit: False when enlisted in a larger atomic unit

        Returns:
            LedgerResult with the new balance

        Raises:
            ValueError: If amount < 0
            ResourceNotFoundError: If the user does not exist
        """
        if amount < 0:
            raise ValueError("Credit amount must not be negative")

        payment_fields = {k: v for k, v in (metadata or {}).items() if k in PAYMENT_FIELDS}

        try:
            result = await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(credit_balance=User.credit_balance + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise ResourceNotFoundError("User", user_id)

            entry = await TransactionRecorder.append(
                db,
                user_id=user_id,
                transaction_type=transaction_type,
                amount=amount,
                description=description,
                created_at=created_at,
                **payment_fields,
            )
            new_balance = await CreditLedger.get_balance(db, user_id)

            if commit:
                await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        logger.info(
            "Credits added",
            extra={
                "user_id": user_id,
                "amount": amount,
                "type": transaction_type.value,
                "balance": new_balance,
                "transaction_id": entry.id,
            }
        )
        return LedgerResult(applied=True, balance=new_balance, amount=amount, transaction_id=entry.id)

    @staticmethod
    async def adjust(db: AsyncSession, user_id: int, amount: int, reason: str) -> LedgerResult:
        """
        Admin correction: positive amounts credit, negative amounts debit.

        A negative adjustment is still guarded, so it can never push the
        balance below zero.
        """
        if amount == 0:
            raise BadRequestError("Adjustment amount must not be zero")

        if amount > 0:
            return await CreditLedger.credit(
                db, user_id, amount, TransactionType.ADMIN_ADJUSTMENT, reason
            )
        return await CreditLedger.debit(
            db, user_id, -amount, reason, transaction_type=TransactionType.ADMIN_ADJUSTMENT
        )

    @staticmethod
    async def reconcile(db: AsyncSession, user_id: int) -> int:
        """
        Verify balance == sum(ledger) for a user.

        Returns:
            The verified balance

        Raises:
            LedgerIntegrityError: On mismatch (never auto-corrected)
        """
        balance = await CreditLedger.get_balance(db, user_id)
        ledger_sum = await TransactionRecorder.sum_amounts(db, user_id)
        if balance != ledger_sum:
            raise LedgerIntegrityError(
                f"Balance of user {user_id} does not match its ledger",
                details={"user_id": user_id, "balance": balance, "ledger_sum": ledger_sum},
            )
        return balance
