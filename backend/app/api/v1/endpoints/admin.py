"""
Admin API Endpoints.

Back-office credit adjustments and ledger audits, with audit logging.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.exceptions import LedgerIntegrityError
from backend.app.core.guards import require_admin
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.schemas.admin import (
    CreditAdjustmentRequest, CreditAdjustmentResponse, LedgerAuditResponse,
    AuditTrailResponse, AuditLogResponse,
)
from backend.app.services.audit import log_event, AuditAction, get_audit_trail

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/users/{user_id}/credits", response_model=CreditAdjustmentResponse)
async def adjust_credits(
    user_id: int,
    request: CreditAdjustmentRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Manually credit (positive amount) or debit (negative amount) a user.

    Negative adjustments are guarded like any debit: 402 if the user's
    balance does not cover them.
    """
    result = await CreditLedger.adjust(db, user_id, request.amount, f"Admin adjustment: {request.reason}")

    audit_log = await log_event(
        db=db,
        action=AuditAction.CREDITS_ADJUSTED,
        actor=admin,
        target_user_id=user_id,
        metadata={
            "amount": request.amount,
            "reason": request.reason,
            "transaction_id": result.transaction_id,
            "balance": result.balance,
        }
    )

    return CreditAdjustmentResponse(
        user_id=user_id,
        amount=request.amount,
        balance=result.balance,
        transaction_id=result.transaction_id,
        audit_log_id=audit_log.id,
    )


@router.get("/users/{user_id}/ledger-audit", response_model=LedgerAuditResponse)
async def audit_ledger(
    user_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Reconcile a user's balance against the sum of their ledger.

    A mismatch is reported as 500 ERR_INTEGRITY_001 and logged as critical.
    """
    try:
        balance = await CreditLedger.reconcile(db, user_id)
    except LedgerIntegrityError as exc:
        await log_event(
            db=db,
            action=AuditAction.LEDGER_MISMATCH,
            actor=admin,
            target_user_id=user_id,
            metadata=exc.details,
        )
        raise

    await log_event(
        db=db,
        action=AuditAction.LEDGER_AUDITED,
        actor=admin,
        target_user_id=user_id,
        metadata={"balance": balance}
    )
    return LedgerAuditResponse(
        user_id=user_id,
        balance=balance,
        ledger_sum=await TransactionRecorder.sum_amounts(db, user_id),
        consistent=True,
    )


@router.get("/audit-logs", response_model=AuditTrailResponse)
async def list_audit_logs(
    user_id: Optional[int] = Query(None, description="Filter by affected user"),
    action: Optional[str] = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=500),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the money/admin audit trail, most recent first.
    """
    logs = await get_audit_trail(db, target_user_id=user_id, action=action, limit=limit)
    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs),
    )
