"""
User roles enumeration.

Defines the role types for the credit ledger backend.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Back-office access (adjustments, invoices, ledger audits)
        USER: Regular customer (default role)
    """
    ADMIN = "ADMIN"
    USER = "USER"
