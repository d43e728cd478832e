"""
Shared test helpers (plain functions, usable with any session).
"""

import itertools
import json

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.jwt import token_for_user
from backend.app.core.security import sign_payload
from backend.app.models.enums import UserRole
from backend.app.models.user import User

_user_seq = itertools.count(1)


async def create_user(
    session: AsyncSession,
    username: str = None,
    email_verified: bool = True,
    role: UserRole = UserRole.USER,
    referral_code: str = None,
    **fields,
) -> User:
    """
    Insert a user row directly, bypassing identity provisioning.

    The balance starts at zero; tests fund it through CreditLedger so the
    balance always matches the ledger.
    """
    n = next(_user_seq)
    username = username or f"seeker{n}"
    user = User(
        email=f"{username}@test.com",
        username=username,
        email_verified=email_verified,
        role=role,
        referral_code=referral_code or f"CODE{n:04d}",
        **fields,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def balance_of(session: AsyncSession, user_id: int) -> int:
    """Balance straight from the row (ORM instances may hold a stale copy)."""
    result = await session.execute(select(User.credit_balance).where(User.id == user_id))
    return result.scalar_one()


def auth_headers(user: User, email_verified: bool = None) -> dict:
    """Bearer header carrying the identity provider claims for `user`."""
    token = token_for_user(
        user.id,
        user.username,
        user.role.value,
        user.email_verified if email_verified is None else email_verified,
    )
    return {"Authorization": f"Bearer {token}"}


def signed(payload: dict, secret: str = None) -> tuple[bytes, dict]:
    """JSON body plus the matching X-Webhook-Signature header."""
    body = json.dumps(payload).encode("utf-8")
    signature = sign_payload(body, secret or settings.payment_webhook_secret)
    return body, {"X-Webhook-Signature": signature, "Content-Type": "application/json"}
