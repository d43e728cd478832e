"""
Daily Bonus Scheduler (Domain Logic).

One login bonus per calendar day (local midnight in the business timezone,
not a rolling 24h window). Consecutive days build a streak; every 7th day
of a streak pays an extra weekly bonus.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import local_date, utcnow
from backend.app.core.config import settings
from backend.app.core.exceptions import DailyBonusAlreadyClaimedError, ResourceNotFoundError
from backend.app.domain.credits.achievement_tracker import AchievementTracker, UnlockedAchievement
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.models.credit_enums import TransactionType
from backend.app.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class DailyBonusResult:
    awarded: int
    balance: int
    streak: int
    claimed_on: date
    transaction_id: int
    achievements: List[UnlockedAchievement] = field(default_factory=list)


def is_eligible(user: User, now: datetime) -> bool:
    """True if the user has not logged in yet on the local calendar day of `now`."""
    if user.last_login_date is None:
        return True
    return user.last_login_date != local_date(now)


def next_streak(last_login_date: Optional[date], today: date, current_streak: int) -> int:
    """Streak after claiming today: continues only from yesterday."""
    if last_login_date is not None and last_login_date == today - timedelta(days=1):
        return current_streak + 1
    return 1


def bonus_for_streak(streak: int) -> int:
    bonus = settings.daily_bonus_base
    if streak > 0 and streak % 7 == 0:
        bonus += settings.weekly_streak_bonus
    return bonus


class DailyBonusScheduler:

    @staticmethod
    async def _load_user(db: AsyncSession, user_id: int) -> User:
        result = await db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise ResourceNotFoundError("User", user_id)
        return user

    @staticmethod
    async def status(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> dict:
        """Eligibility and the bonus that a claim right now would pay."""
        now = now or utcnow()
        user = await DailyBonusScheduler._load_user(db, user_id)
        today = local_date(now)
        eligible = is_eligible(user, now)
        streak = next_streak(user.last_login_date, today, user.login_streak) if eligible else user.login_streak
        return {
            "eligible": eligible,
            "today": today,
            "last_login_date": user.last_login_date,
            "current_streak": user.login_streak,
            "next_bonus": bonus_for_streak(streak) if eligible else 0,
        }

    @staticmethod
    async def claim(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> DailyBonusResult:
        """
        Claim today's login bonus.

        The day stamp is moved with a compare-and-set on the value that was
        read, so of two concurrent claims only one updates the row; the other
        matches zero rows and reports "already claimed". The credit is part
        of the same transaction as the stamp.

        Args:
            db: Database session
            user_id: Claiming user
            now: Injected clock (tests)

        Returns:
            DailyBonusResult

        Raises:
            DailyBonusAlreadyClaimedError: Bonus already taken today
        """
        now = now or utcnow()
        today = local_date(now)

        user = await DailyBonusScheduler._load_user(db, user_id)
        observed = user.last_login_date
        if observed == today:
            raise DailyBonusAlreadyClaimedError(today)

        streak = next_streak(observed, today, user.login_streak)
        amount = bonus_for_streak(streak)

        if observed is None:
            unchanged = User.last_login_date.is_(None)
        else:
            unchanged = User.last_login_date == observed

        try:
            result = await db.execute(
                update(User)
                .where(User.id == user_id, unchanged)
                .values(last_login_date=today, login_streak=streak)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise DailyBonusAlreadyClaimedError(today)

            description = "Daily login bonus"
            if amount > settings.daily_bonus_base:
                description = f"Daily login bonus ({streak}-day streak)"

            ledger = await CreditLedger.credit(
                db, user_id, amount, TransactionType.DAILY_BONUS, description, commit=False
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        logger.info(
            "Daily bonus claimed",
            extra={"user_id": user_id, "amount": amount, "streak": streak, "day": today.isoformat()}
        )

        bonus = DailyBonusResult(
            awarded=amount,
            balance=ledger.balance,
            streak=streak,
            claimed_on=today,
            transaction_id=ledger.transaction_id,
        )

        # Streak achievements are a follow-up; the bonus is already committed.
        try:
            counters = await AchievementTracker.load_counters(db, user_id)
            bonus.achievements = await AchievementTracker.evaluate(db, user_id, counters)
            if bonus.achievements:
                bonus.balance = bonus.achievements[-1].balance
        except SQLAlchemyError:
            logger.exception("Achievement evaluation after daily bonus failed", extra={"user_id": user_id})

        return bonus
