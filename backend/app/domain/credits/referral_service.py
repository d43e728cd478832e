"""
Referral Redeemer (Domain Logic).

A user may redeem one referral code, ever. Redemption credits both the
referee and the referrer; the referee's one-way `referral_redeemed` flag is
flipped by a guarded UPDATE in the same transaction as both credits, so a
retried or duplicated request can never pay twice.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    EmailUnverifiedError,
    InvalidReferralCodeError,
    ReferralAlreadyRedeemedError,
    ResourceNotFoundError,
    SelfReferralError,
)
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.models.credit_enums import TransactionType
from backend.app.models.user import User

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class ReferralResult:
    referrer_id: int
    referrer_username: str
    credits_awarded: int
    balance: int


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def generate_referral_code(username: str) -> str:
    """Four letters from the username followed by four random characters."""
    base = "".join(ch for ch in (username or "").upper() if ch in CODE_ALPHABET)[:4]
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"{base}{suffix}"


class ReferralRedeemer:

    @staticmethod
    async def redeem(
        db: AsyncSession,
        referee_id: int,
        code: str,
        email_verified: Optional[bool] = None,
    ) -> ReferralResult:
        """
        Redeem a referral code for `referee_id`.

        Checks, in order: unknown code, own code, already redeemed,
        unverified email.

        Args:
            db: Database session
            referee_id: Authenticated user redeeming the code
            code: Submitted code (case and surrounding spaces ignored)
            email_verified: Claim from the identity provider; falls back to
                the stored flag when not supplied

        Returns:
            ReferralResult with the referee's new balance
        """
        normalized = normalize_code(code)

        referrer = None
        if normalized:
            result = await db.execute(select(User).where(User.referral_code == normalized))
            referrer = result.scalar_one_or_none()
        if referrer is None:
            raise InvalidReferralCodeError(normalized)

        if referrer.id == referee_id:
            raise SelfReferralError()

        result = await db.execute(
            select(User).where(User.id == referee_id).execution_options(populate_existing=True)
        )
        referee = result.scalar_one_or_none()
        if referee is None:
            raise ResourceNotFoundError("User", referee_id)

        if referee.referral_redeemed:
            raise ReferralAlreadyRedeemedError()

        verified = referee.email_verified if email_verified is None else email_verified
        if not verified:
            raise EmailUnverifiedError()

        bonus = settings.referral_bonus
        try:
            flipped = await db.execute(
                update(User)
                .where(User.id == referee_id, User.referral_redeemed.is_(False))
                .values(referral_redeemed=True, referred_by_id=referrer.id)
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 0:
                await db.rollback()
                raise ReferralAlreadyRedeemedError()

            referee_credit = await CreditLedger.credit(
                db, referee_id, bonus, TransactionType.REFERRAL_BONUS,
                f"Referral bonus - used code from {referrer.username}",
                commit=False,
            )
            await CreditLedger.credit(
                db, referrer.id, bonus, TransactionType.REFERRAL_BONUS,
                f"Referral bonus - {referee.username} used your code",
                commit=False,
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        logger.info(
            "Referral redeemed",
            extra={"referee_id": referee_id, "referrer_id": referrer.id, "code": normalized}
        )
        return ReferralResult(
            referrer_id=referrer.id,
            referrer_username=referrer.username,
            credits_awarded=bonus,
            balance=referee_credit.balance,
        )

    @staticmethod
    async def get_or_create_code(db: AsyncSession, user_id: int) -> str:
        """Return the user's shareable code, minting one on first request."""
        for _ in range(5):
            result = await db.execute(
                select(User).where(User.id == user_id).execution_options(populate_existing=True)
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise ResourceNotFoundError("User", user_id)
            if user.referral_code:
                return user.referral_code

            user.referral_code = generate_referral_code(user.username)
            try:
                await db.commit()
                return user.referral_code
            except IntegrityError:
                await db.rollback()

        raise RuntimeError(f"Could not allocate a referral code for user {user_id}")

    @staticmethod
    async def stats(db: AsyncSession, user_id: int) -> dict:
        """Referral overview for the profile page."""
        code = await ReferralRedeemer.get_or_create_code(db, user_id)
        referred = await db.execute(
            select(func.count(User.id)).where(User.referred_by_id == user_id)
        )
        redeemed = await db.execute(select(User.referral_redeemed).where(User.id == user_id))
        referred_count = referred.scalar_one()
        return {
            "referral_code": code,
            "referred_count": referred_count,
            "credits_earned": referred_count * settings.referral_bonus,
            "has_redeemed": bool(redeemed.scalar_one()),
        }
