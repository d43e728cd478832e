"""
Referral Redemption Tests.

Exactly-once redemption, validation order and both-sided credit.
"""

import pytest

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    EmailUnverifiedError,
    InvalidReferralCodeError,
    ReferralAlreadyRedeemedError,
    SelfReferralError,
)
from backend.app.domain.credits.referral_service import (
    ReferralRedeemer,
    generate_referral_code,
    normalize_code,
)
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.tests.helpers import balance_of


def test_code_generation_uses_username_prefix():
    code = generate_referral_code("luna.star")
    assert code.startswith("LUNA")
    assert len(code) == 8
    assert code == code.upper()


def test_normalize_code():
    assert normalize_code("  abcd1234 ") == "ABCD1234"
    assert normalize_code(None) == ""


@pytest.mark.asyncio
async def test_redeem_credits_both_users(db_session, make_user):
    referrer = await make_user(referral_code="STAR1234")
    referee = await make_user()

    result = await ReferralRedeemer.redeem(db_session, referee.id, "star1234")

    assert result.referrer_id == referrer.id
    assert result.credits_awarded == settings.referral_bonus
    assert result.balance == settings.referral_bonus
    assert await balance_of(db_session, referee.id) == settings.referral_bonus
    assert await balance_of(db_session, referrer.id) == settings.referral_bonus
    assert await TransactionRecorder.sum_amounts(db_session, referrer.id) == settings.referral_bonus


@pytest.mark.asyncio
async def test_second_redemption_is_refused(db_session, make_user):
    await make_user(referral_code="STAR1234")
    await make_user(referral_code="MOON5678")
    referee = await make_user()

    await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234")

    with pytest.raises(ReferralAlreadyRedeemedError):
        await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234")
    with pytest.raises(ReferralAlreadyRedeemedError):
        await ReferralRedeemer.redeem(db_session, referee.id, "MOON5678")

    assert await balance_of(db_session, referee.id) == settings.referral_bonus


@pytest.mark.asyncio
async def test_own_code_is_refused(db_session, make_user):
    user = await make_user(referral_code="SELF0001")

    with pytest.raises(SelfReferralError):
        await ReferralRedeemer.redeem(db_session, user.id, "SELF0001")
    assert await balance_of(db_session, user.id) == 0


@pytest.mark.asyncio
async def test_unknown_code_is_refused(db_session, make_user):
    user = await make_user()

    with pytest.raises(InvalidReferralCodeError) as exc:
        await ReferralRedeemer.redeem(db_session, user.id, "NOPE0000")
    assert exc.value.status_code == 404

    with pytest.raises(InvalidReferralCodeError):
        await ReferralRedeemer.redeem(db_session, user.id, "   ")


@pytest.mark.asyncio
async def test_unverified_email_is_refused(db_session, make_user):
    referrer = await make_user(referral_code="STAR1234")
    referee = await make_user(email_verified=False)

    with pytest.raises(EmailUnverifiedError):
        await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234")

    assert await balance_of(db_session, referee.id) == 0
    assert await balance_of(db_session, referrer.id) == 0


@pytest.mark.asyncio
async def test_token_claim_overrides_stored_verification(db_session, make_user):
    await make_user(referral_code="STAR1234")
    referee = await make_user(email_verified=False)

    result = await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234", email_verified=True)

    assert result.balance == settings.referral_bonus


@pytest.mark.asyncio
async def test_already_redeemed_is_checked_before_verification(db_session, make_user):
    await make_user(referral_code="STAR1234")
    referee = await make_user()
    await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234")

    with pytest.raises(ReferralAlreadyRedeemedError):
        await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234", email_verified=False)


@pytest.mark.asyncio
async def test_stats(db_session, make_user):
    referrer = await make_user(referral_code="STAR1234")
    for _ in range(2):
        referee = await make_user()
        await ReferralRedeemer.redeem(db_session, referee.id, "STAR1234")

    stats = await ReferralRedeemer.stats(db_session, referrer.id)

    assert stats == {
        "referral_code": "STAR1234",
        "referred_count": 2,
        "credits_earned": 2 * settings.referral_bonus,
        "has_redeemed": False,
    }
