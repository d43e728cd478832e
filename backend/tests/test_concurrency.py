"""
Concurrency Tests.

Races that must not double-spend or double-pay. Each contender uses its
own session (and connection) on a file-backed database.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    DailyBonusAlreadyClaimedError,
    InsufficientCreditsError,
    ReferralAlreadyRedeemedError,
)
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.daily_bonus import DailyBonusScheduler
from backend.app.domain.credits.payment_webhook import PaymentCompletedEvent, PaymentWebhookHandler
from backend.app.domain.credits.reading_charges import ReadingCharges
from backend.app.domain.credits.referral_service import ReferralRedeemer
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.models.credit_enums import TransactionType
from backend.tests.helpers import balance_of, create_user


async def _seed_user(factory, credits=0, **kwargs):
    async with factory() as session:
        user = await create_user(session, **kwargs)
        if credits:
            await CreditLedger.credit(session, user.id, credits, TransactionType.ADMIN_ADJUSTMENT, "Seed")
        return user.id


async def _attempt(factory, call):
    async with factory() as session:
        try:
            return await call(session)
        except Exception as exc:
            return exc


@pytest.mark.asyncio
async def test_concurrent_debits_never_overspend(file_session_factory):
    """Balance 10, two simultaneous debits of 10: exactly one succeeds."""
    user_id = await _seed_user(file_session_factory, credits=10)

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: CreditLedger.debit(s, user_id, 10, "Tarot reading (celtic_cross)"))
        for _ in range(2)
    ])

    successes = [r for r in results if not isinstance(r, Exception)]
    refusals = [r for r in results if isinstance(r, InsufficientCreditsError)]
    assert len(successes) == 1
    assert len(refusals) == 1

    async with file_session_factory() as session:
        assert await balance_of(session, user_id) == 0
        assert await TransactionRecorder.sum_amounts(session, user_id) == 0


@pytest.mark.asyncio
async def test_many_small_debits_stop_at_zero(file_session_factory):
    user_id = await _seed_user(file_session_factory, credits=5)

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: CreditLedger.debit(s, user_id, 1, "Follow-up question"))
        for _ in range(8)
    ])

    assert sum(1 for r in results if not isinstance(r, Exception)) == 5
    assert sum(1 for r in results if isinstance(r, InsufficientCreditsError)) == 3

    async with file_session_factory() as session:
        assert await CreditLedger.reconcile(session, user_id) == 0


@pytest.mark.asyncio
async def test_concurrent_follow_ups_share_one_free_question(file_session_factory):
    """4 questions asked so far: of two simultaneous follow-ups, only the 5th is free."""
    user_id = await _seed_user(file_session_factory, credits=10, total_questions_asked=4)

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: ReadingCharges.charge_follow_up(s, user_id, 1))
        for _ in range(2)
    ])

    assert not any(isinstance(r, Exception) for r in results)
    assert sorted(r.cost for r in results) == [0, 1]
    assert sorted(r.total_questions_asked for r in results) == [5, 6]

    async with file_session_factory() as session:
        assert await CreditLedger.reconcile(session, user_id) == 9


@pytest.mark.asyncio
async def test_concurrent_daily_bonus_claims_pay_once(file_session_factory):
    user_id = await _seed_user(file_session_factory)
    now = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: DailyBonusScheduler.claim(s, user_id, now=now))
        for _ in range(3)
    ])

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, DailyBonusAlreadyClaimedError)) == 2

    async with file_session_factory() as session:
        assert await balance_of(session, user_id) == settings.daily_bonus_base


@pytest.mark.asyncio
async def test_concurrent_referral_redemptions_pay_once(file_session_factory):
    referrer_id = await _seed_user(file_session_factory, referral_code="RACE0001")
    referee_id = await _seed_user(file_session_factory)

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: ReferralRedeemer.redeem(s, referee_id, "RACE0001"))
        for _ in range(2)
    ])

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert sum(1 for r in results if isinstance(r, ReferralAlreadyRedeemedError)) == 1

    async with file_session_factory() as session:
        assert await balance_of(session, referee_id) == settings.referral_bonus
        assert await balance_of(session, referrer_id) == settings.referral_bonus


@pytest.mark.asyncio
async def test_racing_duplicate_webhooks_credit_once(file_session_factory):
    user_id = await _seed_user(file_session_factory)
    event = PaymentCompletedEvent(
        payment_id="pi_race",
        payment_provider="stripe",
        amount_paid=Decimal("4.99"),
        currency="EUR",
        user_id=user_id,
        credits_granted=50,
    )

    results = await asyncio.gather(*[
        _attempt(file_session_factory, lambda s: PaymentWebhookHandler.handle_payment_completed(s, event))
        for _ in range(2)
    ])

    assert not any(isinstance(r, Exception) for r in results)
    assert sorted(r.duplicate for r in results) == [False, True]
    assert results[0].invoice_number == results[1].invoice_number

    async with file_session_factory() as session:
        assert await balance_of(session, user_id) == 50


@pytest.mark.asyncio
async def test_concurrent_purchases_get_gap_free_numbers(file_session_factory):
    user_ids = [await _seed_user(file_session_factory) for _ in range(3)]
    now = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)

    def event(i, user_id):
        return PaymentCompletedEvent(
            payment_id=f"pi_{i}",
            payment_provider="stripe",
            amount_paid=Decimal("4.99"),
            currency="EUR",
            user_id=user_id,
            credits_granted=50,
        )

    results = await asyncio.gather(*[
        _attempt(
            file_session_factory,
            lambda s, e=event(i, user_ids[i % 3]): PaymentWebhookHandler.handle_payment_completed(s, e, now=now),
        )
        for i in range(6)
    ])

    assert not any(isinstance(r, Exception) for r in results)
    assert sorted(r.invoice_number for r in results) == [f"MO-2025-{n:05d}" for n in range(1, 7)]
