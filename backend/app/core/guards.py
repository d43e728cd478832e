"""
Role guards for back-office endpoints.

Customers only ever act on their own ledger (the user id comes from the
token), so the only access rule beyond authentication is the admin role.
"""

from typing import Iterable

from fastapi import Depends

from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import InsufficientPermissionsError
from backend.app.models.enums import UserRole


def _role_of(current_user: dict) -> UserRole:
    try:
        return UserRole(current_user.get("role"))
    except ValueError:
        raise InsufficientPermissionsError("Invalid role in token")


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Dependency factory: the caller's token role must be one of `allowed_roles`.

    Usage:
        @router.get("/admin/invoices")
        async def list_invoices(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        InsufficientPermissionsError (403) for any other role
    """
    allowed = frozenset(allowed_roles)

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if _role_of(current_user) not in allowed:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join(sorted(r.value for r in allowed))}",
                details={"role": current_user.get("role")},
            )
        return current_user

    return role_checker


# Admin-only endpoints (credit adjustments, ledger audits, audit trail)
require_admin = require_role([UserRole.ADMIN])
