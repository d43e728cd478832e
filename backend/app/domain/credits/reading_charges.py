"""
Reading Charges (Domain Logic).

Prices readings and follow-up questions and charges them through the
credit ledger. Debit and activity counters move in one transaction;
achievement evaluation follows once the charge is committed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.credits.achievement_tracker import AchievementTracker, UnlockedAchievement
from backend.app.domain.credits.credit_ledger import CreditLedger
from backend.app.domain.credits.question_cost import QuestionCostPolicy
from backend.app.models.reading_enums import SpreadType
from backend.app.models.spread_usage import SpreadUsage
from backend.app.models.user import User

logger = logging.getLogger(__name__)

SPREAD_COSTS = {
    SpreadType.SINGLE: 1,
    SpreadType.TWO_CARD: 2,
    SpreadType.THREE_CARD: 3,
    SpreadType.FIVE_CARD: 5,
    SpreadType.LOVE: 5,
    SpreadType.CAREER: 5,
    SpreadType.HORSESHOE: 7,
    SpreadType.CELTIC_CROSS: 10,
}
ADVANCED_STYLE_COST = 1
EXTENDED_QUESTION_COST = 1


@dataclass
class ReadingCharge:
    cost: int
    balance: int
    transaction_id: Optional[int]
    total_readings: int
    achievements: List[UnlockedAchievement] = field(default_factory=list)


@dataclass
class FollowUpCharge:
    cost: int
    balance: int
    transaction_id: Optional[int]
    total_questions_asked: int


def spread_cost(spread_type: SpreadType, advanced_style: bool = False, extended_question: bool = False) -> int:
    """Credits for a reading: spread base price plus optional extras."""
    cost = SPREAD_COSTS[spread_type]
    if advanced_style:
        cost += ADVANCED_STYLE_COST
    if extended_question:
        cost += EXTENDED_QUESTION_COST
    return cost


class ReadingCharges:

    @staticmethod
    async def charge_reading(
        db: AsyncSession,
        user_id: int,
        spread_type: SpreadType,
        advanced_style: bool = False,
        extended_question: bool = False,
    ) -> ReadingCharge:
        """
        Charge a tarot reading.

        Flow:
        1. Guarded debit of the spread cost (InsufficientCreditsError if short)
        2. Increment total_readings, record first use of the spread
        3. Commit
        4. Evaluate achievements (each unlock commits on its own)
        """
        cost = spread_cost(spread_type, advanced_style, extended_question)
        try:
            ledger = await CreditLedger.debit(
                db, user_id, cost, f"Tarot reading ({spread_type.value})", commit=False
            )
            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(total_readings=User.total_readings + 1)
                .execution_options(synchronize_session=False)
            )
            await ReadingCharges._record_spread(db, user_id, spread_type)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        total = await db.execute(select(User.total_readings).where(User.id == user_id))
        charge = ReadingCharge(
            cost=cost,
            balance=ledger.balance,
            transaction_id=ledger.transaction_id,
            total_readings=total.scalar_one(),
        )

        counters = await AchievementTracker.load_counters(db, user_id)
        charge.achievements = await AchievementTracker.evaluate(db, user_id, counters)
        if charge.achievements:
            charge.balance = charge.achievements[-1].balance

        logger.info(
            "Reading charged",
            extra={"user_id": user_id, "spread": spread_type.value, "cost": cost, "balance": charge.balance}
        )
        return charge

    @staticmethod
    async def _record_spread(db: AsyncSession, user_id: int, spread_type: SpreadType) -> None:
        # Runs after the debit, so the user row lock already serializes this check.
        existing = await db.execute(
            select(SpreadUsage.id).where(
                SpreadUsage.user_id == user_id, SpreadUsage.spread_type == spread_type
            )
        )
        if existing.scalar_one_or_none() is None:
            db.add(SpreadUsage(user_id=user_id, spread_type=spread_type))
            await db.flush()

    @staticmethod
    async def follow_up_cost(db: AsyncSession, user_id: int, session_question_index: int) -> int:
        result = await db.execute(select(User.total_questions_asked).where(User.id == user_id))
        total = result.scalar_one_or_none()
        if total is None:
            raise ResourceNotFoundError("User", user_id)
        return QuestionCostPolicy.cost_of(session_question_index, total)

    @staticmethod
    async def charge_follow_up(
        db: AsyncSession,
        user_id: int,
        session_question_index: int,
        answer_cached: bool = False,
    ) -> FollowUpCharge:
        """
        Charge a follow-up question.

        Debits only when the policy says the question costs something, and
        counts it toward the lifetime total only when the answer was freshly
        generated (cached answers do not advance the free-question cycle).

        The counter update is the first write of the unit and holds the user
        row until commit, so concurrent follow-ups are priced one after the
        other. A cached answer rewrites the counter unchanged to take the
        same lock.
        """
        counted = User.total_questions_asked if answer_cached else User.total_questions_asked + 1

        try:
            result = await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(total_questions_asked=counted)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise ResourceNotFoundError("User", user_id)

            current = await db.execute(select(User.total_questions_asked).where(User.id == user_id))
            total_after = current.scalar_one()
            asked_before = total_after if answer_cached else total_after - 1
            cost = QuestionCostPolicy.cost_of(session_question_index, asked_before)

            transaction_id = None
            if cost > 0:
                ledger = await CreditLedger.debit(db, user_id, cost, "Follow-up question", commit=False)
                transaction_id = ledger.transaction_id
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        row = await db.execute(
            select(User.credit_balance, User.total_questions_asked).where(User.id == user_id)
        )
        balance, total_questions = row.one()
        return FollowUpCharge(
            cost=cost,
            balance=balance,
            transaction_id=transaction_id,
            total_questions_asked=total_questions,
        )
