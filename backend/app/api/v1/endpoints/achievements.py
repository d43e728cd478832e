"""
Achievement API Endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.credits.achievement_tracker import AchievementTracker
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.schemas.credits import (
    AchievementListResponse, AchievementResponse, ShareReadingResponse, UnlockedAchievementResponse
)

router = APIRouter(prefix="/achievements", tags=["Achievements"])


@router.get("", response_model=AchievementListResponse)
async def list_achievements(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Full catalog with the caller's unlock state.
    """
    unlocked = {
        a.achievement_id: a.unlocked_at
        for a in await AchievementTracker.list_for_user(db, current_user["user_id"])
    }
    catalog = AchievementTracker.catalog()

    return AchievementListResponse(
        achievements=[
            AchievementResponse(
                id=a.id,
                reward=a.reward,
                unlocked=a.id in unlocked,
                unlocked_at=unlocked.get(a.id),
            )
            for a in catalog
        ],
        unlocked_count=len(unlocked),
        total_count=len(catalog),
    )


@router.post("/share", response_model=ShareReadingResponse)
async def share_reading(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Record that the caller shared a reading and evaluate achievements.
    """
    user_id = current_user["user_id"]
    counters = await AchievementTracker.load_counters(db, user_id, has_shared_reading=True)
    unlocked = await AchievementTracker.evaluate(db, user_id, counters)

    return ShareReadingResponse(
        unlocked=[UnlockedAchievementResponse(achievement_id=a.achievement_id, reward=a.reward) for a in unlocked],
        balance=await CreditLedger.get_balance(db, user_id),
    )
