"""
Credit API Endpoints.

Balance, transaction history, invoice download and the daily login bonus.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.daily_bonus import DailyBonusScheduler
from backend.app.domain.credits.invoice_service import InvoiceService
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.app.schemas.credits import (
    BalanceResponse, TransactionListResponse, TransactionResponse,
    DailyBonusStatusResponse, DailyBonusClaimResponse, UnlockedAchievementResponse,
)

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the caller's current credit balance.
    """
    user_id = current_user["user_id"]
    return BalanceResponse(user_id=user_id, balance=await CreditLedger.get_balance(db, user_id))


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List the caller's ledger, newest first.
    """
    user_id = current_user["user_id"]
    transactions = await TransactionRecorder.list_for_user(db, user_id, limit=limit, offset=offset)
    total = await TransactionRecorder.count_for_user(db, user_id)

    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/transactions/{transaction_id}/invoice", response_class=HTMLResponse)
async def download_invoice(
    transaction_id: int,
    language: str = Query("fr", pattern="^(fr|en)$"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Download the HTML invoice of one of the caller's completed purchases.

    Returns 404 for transactions that belong to someone else.
    """
    html = await InvoiceService.invoice_for_user(db, transaction_id, current_user["user_id"], language)
    return HTMLResponse(content=html)


@router.get("/daily-bonus", response_model=DailyBonusStatusResponse)
async def daily_bonus_status(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Whether today's login bonus can still be claimed.
    """
    return DailyBonusStatusResponse(**await DailyBonusScheduler.status(db, current_user["user_id"]))


@router.post("/daily-bonus", response_model=DailyBonusClaimResponse)
async def claim_daily_bonus(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Claim today's login bonus.

    Returns 409 if it was already claimed on the current calendar day.
    """
    result = await DailyBonusScheduler.claim(db, current_user["user_id"])
    return DailyBonusClaimResponse(
        awarded=result.awarded,
        balance=result.balance,
        streak=result.streak,
        claimed_on=result.claimed_on,
        transaction_id=result.transaction_id,
        achievements=[
            UnlockedAchievementResponse(achievement_id=a.achievement_id, reward=a.reward)
            for a in result.achievements
        ],
    )
