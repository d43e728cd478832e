"""
Payment Webhook Handler (Domain Logic).

Turns a provider "payment completed" event into a PURCHASE credit with its
invoice number, exactly once per payment id.

One atomic unit per event:
1. Lock the invoice year (first write of the transaction)
2. Issue a strictly increasing created_at for the purchase
3. Credit the user (PURCHASE, status COMPLETED)
4. Assign and persist the invoice number
5. Commit

Redelivered events are answered from the existing row. Two deliveries
racing past the lookup collide on the unique payment_id and the loser
reports a duplicate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import ensure_utc, utcnow
from backend.app.core.exceptions import BadRequestError
from backend.app.domain.credits.credit_ledger import CreditLedger, LedgerResult
from backend.app.domain.credits.invoice_service import InvoiceService
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.models.credit_enums import TransactionType, PaymentStatus
from backend.app.models.credit_transaction import CreditTransaction

logger = logging.getLogger(__name__)


@dataclass
class PaymentCompletedEvent:
    payment_id: str
    payment_provider: str
    amount_paid: Decimal
    currency: str
    user_id: int
    credits_granted: int
    description: Optional[str] = None


class PaymentWebhookHandler:

    @staticmethod
    async def _duplicate(db: AsyncSession, existing: CreditTransaction) -> LedgerResult:
        logger.info(
            "Duplicate payment webhook ignored",
            extra={"payment_id": existing.payment_id, "transaction_id": existing.id}
        )
        return LedgerResult(
            applied=False,
            balance=await CreditLedger.get_balance(db, existing.user_id),
            amount=existing.amount,
            transaction_id=existing.id,
            duplicate=True,
            invoice_number=existing.invoice_number,
        )

    @staticmethod
    async def handle_payment_completed(
        db: AsyncSession,
        event: PaymentCompletedEvent,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """
        Credit a completed payment, idempotently on `event.payment_id`.

        Args:
            db: Database session
            event: Validated webhook payload
            now: Injected clock (tests)

        Returns:
            LedgerResult; `duplicate=True` and `applied=False` for redeliveries

        Raises:
            BadRequestError: If the payload amounts are not positive
            ResourceNotFoundError: If the user does not exist
        """
        if event.credits_granted <= 0 or event.amount_paid <= 0:
            raise BadRequestError(
                "Payment must grant credits for a positive amount",
                details={"payment_id": event.payment_id},
            )

        existing = await TransactionRecorder.find_by_payment_id(db, event.payment_id)
        if existing is not None:
            return await PaymentWebhookHandler._duplicate(db, existing)

        now = ensure_utc(now) if now else utcnow()
        try:
            created_at = await InvoiceService.lock_for_purchase(db, now)

            ledger = await CreditLedger.credit(
                db,
                event.user_id,
                event.credits_granted,
                TransactionType.PURCHASE,
                event.description or f"{event.credits_granted} credits",
                metadata={
                    "payment_amount": event.amount_paid,
                    "currency": event.currency.upper(),
                    "payment_provider": event.payment_provider,
                    "payment_id": event.payment_id,
                    "payment_status": PaymentStatus.COMPLETED,
                },
                created_at=created_at,
                commit=False,
            )
            transaction = await db.get(CreditTransaction, ledger.transaction_id)
            ledger.invoice_number = await InvoiceService.assign(db, transaction)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await TransactionRecorder.find_by_payment_id(db, event.payment_id)
            if existing is None:
                raise
            return await PaymentWebhookHandler._duplicate(db, existing)
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Purchase completed",
            extra={
                "user_id": event.user_id,
                "payment_id": event.payment_id,
                "credits": event.credits_granted,
                "invoice_number": ledger.invoice_number,
            }
        )
        return ledger
