"""
Reading Charge API Endpoints.

Called by the reading flow and horoscope chat before generating content.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.credits.reading_charges import ReadingCharges, spread_cost
from backend.app.models.reading_enums import SpreadType
from backend.app.schemas.credits import UnlockedAchievementResponse
from backend.app.schemas.readings import (
    SpreadCostResponse, ChargeReadingRequest, ChargeReadingResponse,
    FollowUpCostResponse, ChargeFollowUpRequest, ChargeFollowUpResponse,
)

router = APIRouter(prefix="/readings", tags=["Readings"])


@router.get("/spread-cost", response_model=SpreadCostResponse)
async def get_spread_cost(
    spread_type: SpreadType,
    advanced_style: bool = False,
    extended_question: bool = False,
    current_user: dict = Depends(get_current_user),
):
    """
    Price of a reading before starting it.
    """
    return SpreadCostResponse(
        spread_type=spread_type,
        advanced_style=advanced_style,
        extended_question=extended_question,
        cost=spread_cost(spread_type, advanced_style, extended_question),
    )


@router.post("/charge", response_model=ChargeReadingResponse)
async def charge_reading(
    request: ChargeReadingRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Charge a reading.

    Returns 402 with the current balance when the caller cannot afford it.
    """
    charge = await ReadingCharges.charge_reading(
        db,
        current_user["user_id"],
        request.spread_type,
        advanced_style=request.advanced_style,
        extended_question=request.extended_question,
    )
    return ChargeReadingResponse(
        cost=charge.cost,
        balance=charge.balance,
        transaction_id=charge.transaction_id,
        total_readings=charge.total_readings,
        achievements=[
            UnlockedAchievementResponse(achievement_id=a.achievement_id, reward=a.reward)
            for a in charge.achievements
        ],
    )


@router.get("/follow-up-cost", response_model=FollowUpCostResponse)
async def get_follow_up_cost(
    session_question_index: int = Query(..., ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Cost of the next follow-up question in the current session.
    """
    cost = await ReadingCharges.follow_up_cost(db, current_user["user_id"], session_question_index)
    return FollowUpCostResponse(session_question_index=session_question_index, cost=cost)


@router.post("/follow-up", response_model=ChargeFollowUpResponse)
async def charge_follow_up(
    request: ChargeFollowUpRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Charge a follow-up question (free ones are still counted).
    """
    charge = await ReadingCharges.charge_follow_up(
        db,
        current_user["user_id"],
        request.session_question_index,
        answer_cached=request.answer_cached,
    )
    return ChargeFollowUpResponse(
        cost=charge.cost,
        balance=charge.balance,
        transaction_id=charge.transaction_id,
        total_questions_asked=charge.total_questions_asked,
    )
