"""
Audit trail for money movements and admin actions.

Audit rows are written in their own commit, after the ledger unit has
committed; a failed audit write leaves the money movement in place.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    CREDITS_ADJUSTED = "CREDITS_ADJUSTED"
    PURCHASE_COMPLETED = "PURCHASE_COMPLETED"
    PURCHASE_DUPLICATE = "PURCHASE_DUPLICATE"
    USER_PROVISIONED = "USER_PROVISIONED"
    LEDGER_AUDITED = "LEDGER_AUDITED"
    LEDGER_MISMATCH = "LEDGER_MISMATCH"


async def log_event(
    db: AsyncSession,
    action: str,
    target_user_id: Optional[int] = None,
    actor: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Append one audit row and commit it.

    Args:
        db: Database session
        action: One of the AuditAction constants
        target_user_id: User whose balance or account was affected
        actor: Token claims of the admin acting; None for provider webhooks
        metadata: JSON-serialisable context (amounts, payment id, reason)
    """
    entry = AuditLog(
        action=action,
        target_user_id=target_user_id,
        actor_id=actor["user_id"] if actor else None,
        actor_username=actor.get("sub") if actor else None,
        meta_data=metadata,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


async def get_audit_trail(
    db: AsyncSession,
    target_user_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLog]:
    """Most recent first, optionally narrowed to one user and/or one action."""
    filters = []
    if target_user_id is not None:
        filters.append(AuditLog.target_user_id == target_user_id)
    if action:
        filters.append(AuditLog.action == action)

    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
        .limit(limit)
    )
    return list(result.scalars().all())
