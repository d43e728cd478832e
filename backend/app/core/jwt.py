"""
Bearer tokens issued by the identity provider.

The provider signs tokens with the shared HS256 secret and carries the local
user id, role and email verification state as claims. Local tooling (seed
script, smoke tests) mints the same claim set with `token_for_user`.
"""

from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.clock import utcnow
from backend.app.core.config import settings

REQUIRED_CLAIMS = ("user_id", "role")


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign `data` with an `exp` claim (default lifetime from settings)."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {**data, "exp": utcnow() + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def token_for_user(
    user_id: int,
    username: str,
    role: str,
    email_verified: bool,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Mint a token with the identity provider's claim set.

    Example payload:
        {
            "sub": "stella",
            "user_id": 123,
            "role": "USER",
            "email_verified": true,
            "exp": 1234567890
        }
    """
    return create_access_token(
        {"sub": username, "user_id": user_id, "role": role, "email_verified": bool(email_verified)},
        expires_delta,
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry.

    Returns:
        The claims, or None for a bad or expired token and for one
        without user_id and role.
    """
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if any(claims.get(name) in (None, "") for name in REQUIRED_CLAIMS):
        return None
    return claims
