"""
Authentication dependencies for FastAPI.

Access tokens are issued by the identity provider. A token is accepted when
its signature and expiry check out and it names a local, active user.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from backend.app.core.jwt import decode_access_token
from backend.app.db.session import get_db
from backend.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Resolve the bearer token to its claims.

    Args:
        credentials: HTTP Bearer token from request header
        db: Database session for the account status lookup

    Returns:
        Token claims: user_id, sub (username), role, email_verified

    Raises:
        AuthenticationError: Bad token, or no local user for it (401)
        InsufficientPermissionsError: Account deactivated (403)
    """
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise AuthenticationError("Could not validate credentials")

    # Deactivation must apply immediately, not at token expiry
    result = await db.execute(select(User.is_active).where(User.id == claims["user_id"]))
    is_active = result.scalar_one_or_none()

    if is_active is None:
        raise AuthenticationError("User not found")
    if not is_active:
        raise InsufficientPermissionsError("User account is inactive")

    return claims
