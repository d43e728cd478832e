"""
Invoice Service (Domain Logic).

Assigns and renders French-compliant invoices for credit purchases
(auto-entrepreneur, VAT exempt under art. 293 B du CGI).

Numbering: MO-{year}-{5-digit sequence}, where sequence = 1 + number of
COMPLETED purchases of the same calendar year created before this one.
The number is computed once, under the per-year lock held by the purchase
transaction, and persisted on the row; it is never recomputed on display.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import ensure_utc, year_start
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    LedgerIntegrityError,
    ResourceNotFoundError,
    TransactionNotCompletedError,
    TransactionNotFoundError,
)
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.models.credit_enums import TransactionType, PaymentStatus
from backend.app.models.credit_transaction import CreditTransaction
from backend.app.models.invoice_sequence import InvoiceSequence
from backend.app.models.user import User

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[2] / "templates"

_jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)

CENT = Decimal("0.01")

LABELS = {
    "fr": {
        "title": "FACTURE",
        "invoice_number": "Facture N°",
        "date": "Date",
        "seller": "Vendeur",
        "buyer": "Client",
        "description": "Description",
        "quantity": "Quantité",
        "unit_price": "Prix unitaire",
        "total": "Total",
        "subtotal": "Sous-total",
        "vat": "TVA",
        "total_due": "Total à payer",
        "payment_ref": "Référence de paiement",
        "paid_via": "Payé via",
        "siret": "SIRET",
        "credits": "crédits",
    },
    "en": {
        "title": "INVOICE",
        "invoice_number": "Invoice No.",
        "date": "Date",
        "seller": "Seller",
        "buyer": "Customer",
        "description": "Description",
        "quantity": "Quantity",
        "unit_price": "Unit Price",
        "total": "Total",
        "subtotal": "Subtotal",
        "vat": "VAT",
        "total_due": "Total Due",
        "payment_ref": "Payment Reference",
        "paid_via": "Paid via",
        "siret": "SIRET",
        "credits": "credits",
    },
}


@dataclass
class InvoiceLine:
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


@dataclass
class InvoiceDocument:
    """Everything printed on an invoice, already rounded."""

    invoice_number: str
    invoice_date: str
    seller: Dict[str, str]
    buyer: Dict[str, str]
    items: List[InvoiceLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    vat_rate: Decimal = Decimal("0.00")
    vat_amount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    vat_exempt_text: str = ""
    payment_provider: str = "Unknown"
    payment_id: str = "N/A"
    currency: str = "EUR"


def format_invoice_number(year: int, sequence: int) -> str:
    """MO-2025-00042 style identifier."""
    return f"{settings.invoice_prefix}-{year:04d}-{sequence:05d}"


def _seller() -> Dict[str, str]:
    return {
        "name": settings.seller_name,
        "address": settings.seller_address,
        "siret": settings.seller_siret,
        "email": settings.seller_email,
    }


def _ensure_completed_purchase(transaction: Optional[CreditTransaction], transaction_id: Any = None) -> CreditTransaction:
    if transaction is None:
        raise TransactionNotFoundError(transaction_id)
    if transaction.type != TransactionType.PURCHASE or transaction.payment_status != PaymentStatus.COMPLETED:
        raise TransactionNotCompletedError(transaction.id)
    return transaction


class InvoiceService:

    # ------------------------------------------------------------------
    # Assignment (runs inside the purchase transaction)
    # ------------------------------------------------------------------

    @staticmethod
    async def lock_year(db: AsyncSession, year: int) -> None:
        """
        Take the per-year invoice lock.

        Must be the first write of the purchase transaction: on first use of a
        year the sequence row is created, and losing that insert race rolls
        the (still empty) transaction back before retrying the lock.

        The row is seeded from already completed purchases of the year so a
        fresh deployment continues the existing numbering.
        """
        for _ in range(2):
            result = await db.execute(
                update(InvoiceSequence)
                .where(InvoiceSequence.year == year)
                .values(last_sequence=InvoiceSequence.last_sequence)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return

            start, end = year_start(year), year_start(year + 1)
            db.add(InvoiceSequence(
                year=year,
                last_sequence=await TransactionRecorder.count_completed_purchases(db, start, end),
                last_issued_at=await TransactionRecorder.latest_completed_purchase_at(db, start, end),
            ))
            try:
                await db.flush()
                return
            except IntegrityError:
                await db.rollback()

        raise LedgerIntegrityError(f"Could not lock invoice sequence for {year}", details={"year": year})

    @staticmethod
    async def _sequence_row(db: AsyncSession, year: int) -> Optional[InvoiceSequence]:
        result = await db.execute(
            select(InvoiceSequence)
            .where(InvoiceSequence.year == year)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def issue_timestamp(db: AsyncSession, year: int, now: datetime) -> datetime:
        """
        Creation time for the next purchase of `year`.

        Strictly later than every purchase already issued in the year, so
        created_at order equals assignment order. Call with the year lock held.
        """
        row = await InvoiceService._sequence_row(db, year)
        issued = ensure_utc(now)
        last = ensure_utc(row.last_issued_at) if row else None
        if last is not None and issued <= last:
            issued = last + timedelta(microseconds=1)
        return issued

    @staticmethod
    async def lock_for_purchase(db: AsyncSession, now: datetime) -> datetime:
        """
        Lock the invoice year of the next purchase and return its created_at.

        The timestamp bump can carry a purchase made in the last microsecond
        of a year into the next one; the purchase is then numbered in the year
        it lands in, under that year's lock. Years are locked in increasing
        order.
        """
        issued = ensure_utc(now)
        while True:
            year = issued.year
            await InvoiceService.lock_year(db, year)
            issued = await InvoiceService.issue_timestamp(db, year, issued)
            if issued.year == year:
                return issued
            logger.info("Purchase timestamp rolled into next invoice year", extra={"year": issued.year})

    @staticmethod
    async def assign(db: AsyncSession, transaction: CreditTransaction) -> str:
        """
        Number a freshly completed purchase and persist the number.

        Idempotent: an already numbered row keeps its number.

        Args:
            db: Database session holding the year lock
            transaction: The flushed COMPLETED purchase

        Returns:
            The invoice number

        Raises:
            TransactionNotCompletedError: If the row is not a completed purchase
            LedgerIntegrityError: If the count disagrees with the year counter
        """
        _ensure_completed_purchase(transaction)
        if transaction.invoice_number:
            return transaction.invoice_number

        created_at = ensure_utc(transaction.created_at)
        year = created_at.year

        row = await InvoiceService._sequence_row(db, year)
        if row is None:
            raise LedgerIntegrityError(
                f"Invoice year {year} is not locked", details={"transaction_id": transaction.id}
            )

        prior = await TransactionRecorder.count_completed_purchases(db, year_start(year), created_at)
        sequence = prior + 1
        if sequence != row.last_sequence + 1:
            raise LedgerIntegrityError(
                "Invoice sequence disagrees with completed purchase count",
                details={
                    "transaction_id": transaction.id,
                    "year": year,
                    "counted": sequence,
                    "expected": row.last_sequence + 1,
                },
            )

        invoice_number = format_invoice_number(year, sequence)
        transaction.invoice_number = invoice_number
        transaction.invoice_year = year
        transaction.invoice_sequence = sequence

        row.last_sequence = sequence
        last = ensure_utc(row.last_issued_at)
        if last is None or created_at > last:
            row.last_issued_at = created_at

        await db.flush()

        logger.info(
            "Invoice number assigned",
            extra={"transaction_id": transaction.id, "invoice_number": invoice_number}
        )
        return invoice_number

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @staticmethod
    async def generate(db: AsyncSession, transaction_id: int, user_id: Optional[int] = None) -> str:
        """
        Invoice number of a completed purchase.

        Returns the number persisted at completion time. A completed purchase
        without one is an integrity failure, not something to compute now.

        Args:
            db: Database session
            transaction_id: Purchase transaction id
            user_id: When given, the transaction must belong to this user
        """
        if user_id is None:
            transaction = await db.get(CreditTransaction, transaction_id)
        else:
            transaction = await TransactionRecorder.get_for_user(db, transaction_id, user_id)

        transaction = _ensure_completed_purchase(transaction, transaction_id)
        if not transaction.invoice_number:
            raise LedgerIntegrityError(
                "Completed purchase has no invoice number",
                details={"transaction_id": transaction.id},
            )
        return transaction.invoice_number

    # ------------------------------------------------------------------
    # Rendering (pure)
    # ------------------------------------------------------------------

    @staticmethod
    def build_document(invoice_number: str, transaction: CreditTransaction, buyer: User) -> InvoiceDocument:
        """
        Compute the printed figures for a completed purchase.

        Quantity is the number of credits, unit price is payment_amount /
        credits rounded to 2 decimals, VAT is a fixed 0% line and the total
        equals the subtotal.
        """
        transaction = _ensure_completed_purchase(transaction)
        if transaction.payment_amount is None or not transaction.amount:
            raise TransactionNotCompletedError(transaction.id)

        paid = Decimal(transaction.payment_amount).quantize(CENT, rounding=ROUND_HALF_UP)
        credits = transaction.amount
        unit_price = (paid / credits).quantize(CENT, rounding=ROUND_HALF_UP)

        return InvoiceDocument(
            invoice_number=invoice_number,
            invoice_date=ensure_utc(transaction.created_at).strftime("%d/%m/%Y"),
            seller=_seller(),
            buyer={"username": buyer.username, "email": buyer.email},
            items=[InvoiceLine(
                description=transaction.description or f"{credits} credits",
                quantity=credits,
                unit_price=unit_price,
                total=paid,
            )],
            subtotal=paid,
            vat_rate=Decimal("0.00"),
            vat_amount=Decimal("0.00"),
            total=paid,
            vat_exempt_text=settings.vat_exemption_text,
            payment_provider=transaction.payment_provider or "Unknown",
            payment_id=transaction.payment_id or "N/A",
            currency=transaction.currency or settings.default_currency,
        )

    @staticmethod
    def render_invoice(invoice_number: str, transaction: CreditTransaction, buyer: User, language: str = "fr") -> str:
        """
        Render the invoice as a standalone HTML document.

        Args:
            invoice_number: Persisted invoice number
            transaction: Completed purchase
            buyer: Owner of the transaction
            language: "fr" (default) or "en"

        Returns:
            HTML string, user supplied values escaped
        """
        document = InvoiceService.build_document(invoice_number, transaction, buyer)
        labels = LABELS.get(language, LABELS["fr"])
        template = _jinja.get_template("invoice.html")
        return template.render(
            doc=document,
            labels=labels,
            language=language if language in LABELS else "fr",
            brand=settings.invoice_brand,
        )

    @staticmethod
    async def invoice_for_user(db: AsyncSession, transaction_id: int, user_id: int, language: str = "fr") -> str:
        """
        "Download invoice" for the requesting user.

        Raises:
            TransactionNotFoundError: Missing or owned by someone else
            TransactionNotCompletedError: Not a completed purchase
        """
        invoice_number = await InvoiceService.generate(db, transaction_id, user_id=user_id)
        transaction = await TransactionRecorder.get_for_user(db, transaction_id, user_id)
        buyer = await db.get(User, user_id)
        if buyer is None:
            raise ResourceNotFoundError("User", user_id)
        return InvoiceService.render_invoice(invoice_number, transaction, buyer, language)

    @staticmethod
    async def invoice_for_admin(db: AsyncSession, transaction_id: int, language: str = "fr") -> str:
        """Render any user's invoice (back-office)."""
        invoice_number = await InvoiceService.generate(db, transaction_id)
        transaction = await db.get(CreditTransaction, transaction_id)
        buyer = await db.get(User, transaction.user_id)
        return InvoiceService.render_invoice(invoice_number, transaction, buyer, language)

    # ------------------------------------------------------------------
    # Back-office listing
    # ------------------------------------------------------------------

    @staticmethod
    async def list_invoices(
        db: AsyncSession,
        year: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[tuple[CreditTransaction, str, str]], int]:
        """
        Numbered purchases with buyer identity, newest first.

        Returns:
            ([(transaction, username, email), ...], total)
        """
        filters = [CreditTransaction.invoice_number.is_not(None)]
        if year:
            filters.append(CreditTransaction.invoice_year == year)

        total_result = await db.execute(select(func.count(CreditTransaction.id)).where(*filters))
        total = total_result.scalar_one()

        result = await db.execute(
            select(CreditTransaction, User.username, User.email)
            .join(User, User.id == CreditTransaction.user_id)
            .where(*filters)
            .order_by(desc(CreditTransaction.invoice_year), desc(CreditTransaction.invoice_sequence))
            .offset(offset)
            .limit(limit)
        )
        return [tuple(row) for row in result.all()], total

    @staticmethod
    async def invoice_stats(db: AsyncSession, year: Optional[int] = None) -> Dict[str, Any]:
        """Count, revenue and credits sold over numbered purchases."""
        query = select(
            func.count(CreditTransaction.id),
            func.coalesce(func.sum(CreditTransaction.payment_amount), 0),
            func.coalesce(func.sum(CreditTransaction.amount), 0),
        ).where(CreditTransaction.invoice_number.is_not(None))
        if year:
            query = query.where(CreditTransaction.invoice_year == year)

        count, revenue, credits = (await db.execute(query)).one()
        return {
            "year": year,
            "invoice_count": count,
            "total_revenue": Decimal(str(revenue)).quantize(CENT, rounding=ROUND_HALF_UP),
            "credits_sold": int(credits),
        }
