"""
Transaction Recorder (Domain Logic).

Append-only access to the credit_transactions table. There is deliberately
no update or delete API: the only post-insert write (invoice assignment)
lives in InvoiceService and happens inside the inserting transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.models.credit_transaction import CreditTransaction
from backend.app.models.credit_enums import TransactionType, PaymentStatus


class TransactionRecorder:

    @staticmethod
    async def append(
        db: AsyncSession,
        user_id: int,
        transaction_type: TransactionType,
        amount: int,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
        payment_amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        payment_provider: Optional[str] = None,
        payment_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
    ) -> CreditTransaction:
        """
        Append an immutable ledger row.

        Flushes (so the id is available and unique constraints fire) but never
        commits; the caller owns the transaction.

        Args:
            db: Database session
            user_id: Owner of the balance
            transaction_type: Kind of event
            amount: Signed credit delta
            description: Human readable reason
            created_at: Explicit timestamp (purchases pass the issued invoice time)

        Returns:
            The flushed CreditTransaction
        """
        entry = CreditTransaction(
            user_id=user_id,
            type=transaction_type,
            amount=amount,
            description=description,
            created_at=created_at or utcnow(),
            payment_amount=payment_amount,
            currency=currency,
            payment_provider=payment_provider,
            payment_id=payment_id,
            payment_status=payment_status,
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def count_completed_purchases(db: AsyncSession, year_start: datetime, cutoff: datetime) -> int:
        """
        Count COMPLETED purchases with year_start <= created_at < cutoff.

        Only the invoice generator should call this.
        """
        result = await db.execute(
            select(func.count(CreditTransaction.id)).where(
                CreditTransaction.type == TransactionType.PURCHASE,
                CreditTransaction.payment_status == PaymentStatus.COMPLETED,
                CreditTransaction.created_at >= year_start,
                CreditTransaction.created_at < cutoff,
            )
        )
        return result.scalar_one()

    @staticmethod
    async def latest_completed_purchase_at(db: AsyncSession, year_start: datetime, year_end: datetime) -> Optional[datetime]:
        """Timestamp of the newest COMPLETED purchase inside [year_start, year_end)."""
        result = await db.execute(
            select(func.max(CreditTransaction.created_at)).where(
                CreditTransaction.type == TransactionType.PURCHASE,
                CreditTransaction.payment_status == PaymentStatus.COMPLETED,
                CreditTransaction.created_at >= year_start,
                CreditTransaction.created_at < year_end,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def sum_amounts(db: AsyncSession, user_id: int) -> int:
        """Sum of every transaction amount for a user (reconciliation)."""
        result = await db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.user_id == user_id
            )
        )
        return int(result.scalar_one())

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        """Transaction history, newest first."""
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(desc(CreditTransaction.created_at), desc(CreditTransaction.id))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def count_for_user(db: AsyncSession, user_id: int) -> int:
        result = await db.execute(
            select(func.count(CreditTransaction.id)).where(CreditTransaction.user_id == user_id)
        )
        return result.scalar_one()

    @staticmethod
    async def get_for_user(db: AsyncSession, transaction_id: int, user_id: int) -> Optional[CreditTransaction]:
        """Fetch a transaction only if it belongs to `user_id`."""
        result = await db.execute(
            select(CreditTransaction).where(
                CreditTransaction.id == transaction_id,
                CreditTransaction.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def find_by_payment_id(db: AsyncSession, payment_id: str) -> Optional[CreditTransaction]:
        result = await db.execute(
            select(CreditTransaction).where(CreditTransaction.payment_id == payment_id)
        )
        return result.scalar_one_or_none()
