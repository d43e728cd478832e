"""
Achievement Tracker (Domain Logic).

Evaluates the static achievement catalog against a user's activity
counters. Each newly satisfied achievement is unlocked and rewarded in its
own database transaction: the UserAchievement row and the credit either
both commit or neither does.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.models.credit_enums import TransactionType
from backend.app.models.reading_enums import SpreadType
from backend.app.models.spread_usage import SpreadUsage
from backend.app.models.user import User
from backend.app.models.user_achievement import UserAchievement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityCounters:
    """Snapshot of the activity an achievement predicate can look at."""

    total_readings: int = 0
    login_streak: int = 0
    spreads_used: FrozenSet[SpreadType] = field(default_factory=frozenset)
    has_shared_reading: bool = False


@dataclass(frozen=True)
class Achievement:
    id: str
    reward: int
    predicate: Callable[[ActivityCounters], bool]


@dataclass
class UnlockedAchievement:
    achievement_id: str
    reward: int
    balance: int
    transaction_id: int


ALL_SPREADS_REQUIRED = frozenset({
    SpreadType.SINGLE,
    SpreadType.THREE_CARD,
    SpreadType.LOVE,
    SpreadType.CAREER,
    SpreadType.HORSESHOE,
    SpreadType.CELTIC_CROSS,
})

ACHIEVEMENTS: List[Achievement] = [
    Achievement("first_reading", 3, lambda c: c.total_readings >= 1),
    Achievement("five_readings", 5, lambda c: c.total_readings >= 5),
    Achievement("ten_readings", 10, lambda c: c.total_readings >= 10),
    Achievement("celtic_master", 5, lambda c: SpreadType.CELTIC_CROSS in c.spreads_used),
    Achievement("all_spreads", 10, lambda c: ALL_SPREADS_REQUIRED <= c.spreads_used),
    Achievement("week_streak", 10, lambda c: c.login_streak >= 7),
    Achievement("share_reading", 3, lambda c: c.has_shared_reading),
]


def _satisfied(achievement: Achievement, counters: ActivityCounters) -> bool:
    # Predicates are plain comparisons; a broken one counts as "not yet".
    try:
        return bool(achievement.predicate(counters))
    except Exception:
        logger.exception("Achievement predicate failed", extra={"achievement_id": achievement.id})
        return False


class AchievementTracker:

    @staticmethod
    def catalog() -> List[Achievement]:
        return list(ACHIEVEMENTS)

    @staticmethod
    async def unlocked_ids(db: AsyncSession, user_id: int) -> set[str]:
        result = await db.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
        )
        return set(result.scalars().all())

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int) -> List[UserAchievement]:
        result = await db.execute(
            select(UserAchievement)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.unlocked_at, UserAchievement.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def load_counters(db: AsyncSession, user_id: int, has_shared_reading: bool = False) -> ActivityCounters:
        """Build counters from the user row and spread usage."""
        result = await db.execute(
            select(User.total_readings, User.login_streak).where(User.id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            raise ResourceNotFoundError("User", user_id)

        spreads = await db.execute(
            select(SpreadUsage.spread_type).where(SpreadUsage.user_id == user_id)
        )
        unlocked = await AchievementTracker.unlocked_ids(db, user_id)

        return ActivityCounters(
            total_readings=row.total_readings,
            login_streak=row.login_streak,
            spreads_used=frozenset(spreads.scalars().all()),
            has_shared_reading=has_shared_reading or "share_reading" in unlocked,
        )

    @staticmethod
    async def evaluate(db: AsyncSession, user_id: int, counters: ActivityCounters) -> List[UnlockedAchievement]:
        """
        Unlock and reward every achievement newly satisfied by `counters`.

        Already unlocked achievements are skipped without side effects, so
        repeated evaluation is a no-op. A concurrent evaluation that unlocks
        the same achievement first wins on the unique constraint; the loser
        rolls back its unit and skips.

        Args:
            db: Database session (no pending work expected)
            user_id: User being evaluated
            counters: Current activity counters

        Returns:
            Achievements unlocked by this call
        """
        unlocked_now: List[UnlockedAchievement] = []
        already = await AchievementTracker.unlocked_ids(db, user_id)

        for achievement in ACHIEVEMENTS:
            if achievement.id in already or not _satisfied(achievement, counters):
                continue

            try:
                db.add(UserAchievement(user_id=user_id, achievement_id=achievement.id))
                await db.flush()
                ledger = await CreditLedger.credit(
                    db,
                    user_id,
                    achievement.reward,
                    TransactionType.ACHIEVEMENT_BONUS,
                    f"Achievement unlocked: {achievement.id}",
                    commit=False,
                )
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(
                    "Achievement already unlocked concurrently",
                    extra={"user_id": user_id, "achievement_id": achievement.id}
                )
                continue
            except SQLAlchemyError:
                await db.rollback()
                raise

            logger.info(
                "Achievement unlocked",
                extra={"user_id": user_id, "achievement_id": achievement.id, "reward": achievement.reward}
            )
            unlocked_now.append(UnlockedAchievement(
                achievement_id=achievement.id,
                reward=achievement.reward,
                balance=ledger.balance,
                transaction_id=ledger.transaction_id,
            ))

        return unlocked_now
