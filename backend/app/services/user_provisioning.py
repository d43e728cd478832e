"""
User provisioning from the identity provider.

Creates the local user row (with a referral code) the first time the
identity provider reports a sign-up, and pays the welcome bonus through the
credit ledger so the balance starts out backed by a transaction.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.referral_service import generate_referral_code
from backend.app.models.credit_enums import TransactionType
from backend.app.models.enums import UserRole
from backend.app.models.user import User

logger = logging.getLogger(__name__)


async def provision_user(
    db: AsyncSession,
    external_id: str,
    email: str,
    username: str,
    email_verified: bool = False,
    role: UserRole = UserRole.USER,
) -> tuple[User, bool]:
    """
    Create a user if the identity provider subject is unknown.

    Idempotent on `external_id`: redelivered sign-up events return the
    existing user.

    Args:
        db: Database session
        external_id: Identity provider subject
        email: Primary email address
        username: Display name
        email_verified: Verification state reported by the provider
        role: Initial role

    Returns:
        (user, created)
    """
    existing = await _find(db, external_id)
    if existing is not None:
        return existing, False

    user = User(
        external_id=external_id,
        email=email,
        username=username,
        email_verified=email_verified,
        role=role,
        credit_balance=0,
        referral_code=generate_referral_code(username),
    )
    db.add(user)
    try:
        await db.flush()
        if settings.welcome_bonus > 0:
            await CreditLedger.credit(
                db, user.id, settings.welcome_bonus, TransactionType.ACHIEVEMENT_BONUS,
                "Welcome bonus", commit=False,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _find(db, external_id)
        if existing is None:
            raise
        return existing, False

    logger.info("User provisioned", extra={"user_id": user.id, "external_id": external_id})
    return user, True


async def sync_email_verification(db: AsyncSession, external_id: str, email_verified: bool) -> Optional[User]:
    """Mirror the provider's email verification flag."""
    user = await _find(db, external_id)
    if user is None:
        return None
    user.email_verified = email_verified
    await db.commit()
    return user


async def _find(db: AsyncSession, external_id: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.external_id == external_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
