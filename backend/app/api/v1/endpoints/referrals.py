"""
Referral API Endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.credits.referral_service import ReferralRedeemer
from backend.app.schemas.credits import (
    RedeemReferralRequest, RedeemReferralResponse, ReferralStatsResponse
)

router = APIRouter(prefix="/referrals", tags=["Referrals"])


@router.get("/me", response_model=ReferralStatsResponse)
async def my_referrals(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    The caller's shareable code and how many people used it.
    """
    return ReferralStatsResponse(**await ReferralRedeemer.stats(db, current_user["user_id"]))


@router.post("/redeem", response_model=RedeemReferralResponse)
async def redeem_referral(
    request: RedeemReferralRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Redeem a referral code; both users earn the referral bonus.

    The email verification claim comes from the identity provider token.
    """
    result = await ReferralRedeemer.redeem(
        db,
        current_user["user_id"],
        request.code,
        email_verified=current_user.get("email_verified"),
    )
    return RedeemReferralResponse(
        success=True,
        message=(
            f"Referral code redeemed! You and {result.referrer_username} "
            f"each earned {result.credits_awarded} credits."
        ),
        credits_awarded=result.credits_awarded,
        new_balance=result.balance,
    )
