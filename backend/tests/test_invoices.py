"""
Invoice Numbering and Rendering Tests.

Numbers are MO-{year}-{sequence}, gap-free per year, assigned once at
purchase completion and never recomputed.
"""

import pytest
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from sqlalchemy import update

from backend.app.core.exceptions import (
    LedgerIntegrityError,
    TransactionNotCompletedError,
    TransactionNotFoundError,
)
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.invoice_service import InvoiceService, format_invoice_number
from backend.app.domain.credits.payment_webhook import PaymentCompletedEvent, PaymentWebhookHandler
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.models.credit_enums import TransactionType, PaymentStatus
from backend.app.models.credit_transaction import CreditTransaction
from backend.app.models.invoice_sequence import InvoiceSequence
from backend.tests.helpers import balance_of


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def purchase(user_id, payment_id, credits=50, amount="4.99"):
    return PaymentCompletedEvent(
        payment_id=payment_id,
        payment_provider="stripe",
        amount_paid=Decimal(amount),
        currency="eur",
        user_id=user_id,
        credits_granted=credits,
        description=f"Pack {credits} credits",
    )


def test_number_format():
    assert format_invoice_number(2025, 1) == "MO-2025-00001"
    assert format_invoice_number(2025, 42) == "MO-2025-00042"


@pytest.mark.asyncio
async def test_purchases_are_numbered_in_order(db_session, make_user):
    alice = await make_user()
    bob = await make_user()

    numbers = []
    for i, user in enumerate([alice, bob, alice]):
        result = await PaymentWebhookHandler.handle_payment_completed(
            db_session, purchase(user.id, f"pi_{i}"), now=utc(2025, 2, 1, 10, i)
        )
        numbers.append(result.invoice_number)

    assert numbers == ["MO-2025-00001", "MO-2025-00002", "MO-2025-00003"]
    assert await balance_of(db_session, alice.id) == 100


@pytest.mark.asyncio
async def test_sequence_restarts_each_year(db_session, make_user):
    user = await make_user()

    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_a"), now=utc(2025, 12, 31, 23, 59)
    )
    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_b"), now=utc(2025, 12, 31, 23, 59, 30)
    )
    new_year = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_c"), now=utc(2026, 1, 1, 0, 0, 1)
    )

    assert new_year.invoice_number == "MO-2026-00001"


@pytest.mark.asyncio
async def test_issue_time_never_goes_backwards(db_session, make_user):
    user = await make_user()
    moment = utc(2025, 5, 5, 12, 0)

    first = await PaymentWebhookHandler.handle_payment_completed(db_session, purchase(user.id, "pi_1"), now=moment)
    second = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_2"), now=moment - timedelta(seconds=5)
    )

    first_row = await db_session.get(CreditTransaction, first.transaction_id)
    second_row = await db_session.get(CreditTransaction, second.transaction_id)
    assert second_row.created_at > first_row.created_at
    assert second.invoice_number == "MO-2025-00002"


@pytest.mark.asyncio
async def test_bumped_issue_time_is_numbered_in_the_year_it_lands_in(db_session, make_user):
    user = await make_user()
    last_moment = utc(2025, 12, 31, 23, 59, 59, 999999)

    december = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_dec"), now=last_moment
    )
    carried = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_carried"), now=last_moment
    )

    assert december.invoice_number == "MO-2025-00001"
    assert carried.invoice_number == "MO-2026-00001"
    carried_row = await db_session.get(CreditTransaction, carried.transaction_id)
    assert carried_row.created_at.replace(tzinfo=timezone.utc) == utc(2026, 1, 1, 0, 0)
    assert await CreditLedger.reconcile(db_session, user.id) == 100


@pytest.mark.asyncio
async def test_generate_returns_the_persisted_number(db_session, make_user):
    user = await make_user()
    result = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_1"), now=utc(2025, 3, 1, 9, 0)
    )

    # A later purchase must not shift an already issued number
    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_2"), now=utc(2025, 3, 2, 9, 0)
    )

    assert await InvoiceService.generate(db_session, result.transaction_id) == "MO-2025-00001"
    assert await InvoiceService.generate(db_session, result.transaction_id, user_id=user.id) == "MO-2025-00001"


@pytest.mark.asyncio
async def test_generate_refuses_non_purchases(db_session, make_user):
    user = await make_user()
    bonus = await CreditLedger.credit(db_session, user.id, 2, TransactionType.DAILY_BONUS, "Daily login bonus")

    with pytest.raises(TransactionNotCompletedError):
        await InvoiceService.generate(db_session, bonus.transaction_id)
    with pytest.raises(TransactionNotFoundError):
        await InvoiceService.generate(db_session, 9999)


@pytest.mark.asyncio
async def test_pending_purchase_gets_no_number(db_session, make_user):
    user = await make_user()
    pending = await TransactionRecorder.append(
        db_session, user.id, TransactionType.PURCHASE, 0, "Awaiting payment",
        payment_id="pi_pending", payment_status=PaymentStatus.PENDING,
    )
    await db_session.commit()

    with pytest.raises(TransactionNotCompletedError):
        await InvoiceService.generate(db_session, pending.id)

    completed = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_done"), now=utc(2025, 4, 1, 9, 0)
    )
    assert completed.invoice_number == "MO-2025-00001"


@pytest.mark.asyncio
async def test_invoice_is_scoped_to_its_owner(db_session, make_user):
    owner = await make_user()
    stranger = await make_user()
    result = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(owner.id, "pi_1"), now=utc(2025, 3, 1, 9, 0)
    )

    with pytest.raises(TransactionNotFoundError):
        await InvoiceService.invoice_for_user(db_session, result.transaction_id, stranger.id)


@pytest.mark.asyncio
async def test_first_purchase_of_a_year_continues_existing_numbering(db_session, make_user):
    """Completed purchases from before the counter existed keep their place."""
    user = await make_user()
    await CreditLedger.credit(
        db_session, user.id, 20, TransactionType.PURCHASE, "Pack 20 credits",
        metadata={"payment_amount": Decimal("1.99"), "payment_id": "pi_legacy",
                  "payment_status": PaymentStatus.COMPLETED},
        created_at=utc(2025, 1, 15, 8, 0),
    )

    result = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_new"), now=utc(2025, 2, 1, 9, 0)
    )

    assert result.invoice_number == "MO-2025-00002"


@pytest.mark.asyncio
async def test_counter_mismatch_aborts_the_purchase(db_session, make_user):
    user = await make_user()
    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_1"), now=utc(2025, 3, 1, 9, 0)
    )
    await db_session.execute(
        update(InvoiceSequence).where(InvoiceSequence.year == 2025).values(last_sequence=7)
    )
    await db_session.commit()

    with pytest.raises(LedgerIntegrityError):
        await PaymentWebhookHandler.handle_payment_completed(
            db_session, purchase(user.id, "pi_2"), now=utc(2025, 3, 2, 9, 0)
        )

    assert await balance_of(db_session, user.id) == 50
    assert await TransactionRecorder.find_by_payment_id(db_session, "pi_2") is None


@pytest.mark.asyncio
async def test_render_invoice_html(db_session, make_user):
    user = await make_user(username="luna")
    result = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_render", credits=50, amount="4.99"), now=utc(2025, 6, 15, 10, 0)
    )

    html = await InvoiceService.invoice_for_user(db_session, result.transaction_id, user.id)

    assert "MO-2025-00001" in html
    assert "15/06/2025" in html
    assert "FACTURE" in html
    assert "TVA non applicable, art. 293 B du CGI" in html
    assert "luna@test.com" in html
    assert "0.10" in html
    assert "4.99" in html
    assert "pi_render" in html


@pytest.mark.asyncio
async def test_render_in_english(db_session, make_user):
    user = await make_user()
    result = await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_en", credits=100, amount="8.99"), now=utc(2025, 6, 15, 10, 0)
    )

    html = await InvoiceService.invoice_for_user(db_session, result.transaction_id, user.id, language="en")

    assert "INVOICE" in html
    assert "0.09" in html


@pytest.mark.asyncio
async def test_rendering_escapes_user_content(db_session, make_user):
    user = await make_user(username="mallory")
    event = purchase(user.id, "pi_xss")
    event.description = "<script>alert(1)</script>"
    result = await PaymentWebhookHandler.handle_payment_completed(db_session, event, now=utc(2025, 6, 1, 9, 0))

    html = await InvoiceService.invoice_for_user(db_session, result.transaction_id, user.id)

    assert "<script>" not in html
    assert "&lt;script&gt;" in html


@pytest.mark.asyncio
async def test_invoice_listing_and_stats(db_session, make_user):
    user = await make_user()
    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_1", credits=50, amount="4.99"), now=utc(2025, 3, 1, 9, 0)
    )
    await PaymentWebhookHandler.handle_payment_completed(
        db_session, purchase(user.id, "pi_2", credits=100, amount="8.99"), now=utc(2025, 3, 2, 9, 0)
    )

    rows, total = await InvoiceService.list_invoices(db_session, year=2025)
    assert total == 2
    assert [t.invoice_number for t, _, _ in rows] == ["MO-2025-00002", "MO-2025-00001"]

    stats = await InvoiceService.invoice_stats(db_session, year=2025)
    assert stats["invoice_count"] == 2
    assert stats["total_revenue"] == Decimal("13.98")
    assert stats["credits_sold"] == 150
