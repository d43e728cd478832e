"""
Daily Bonus Tests.

Calendar-day eligibility in the business timezone, streaks and the
weekly streak bonus.
"""

import pytest
from datetime import date, datetime, timezone

from backend.app.core.config import settings
from backend.app.core.exceptions import DailyBonusAlreadyClaimedError
from backend.app.domain.credits.daily_bonus import (
    DailyBonusScheduler,
    bonus_for_streak,
    next_streak,
)
from backend.app.domain.credits.transaction_recorder import TransactionRecorder
from backend.tests.helpers import balance_of


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_next_streak_rules():
    today = date(2025, 3, 10)
    assert next_streak(None, today, 0) == 1
    assert next_streak(date(2025, 3, 9), today, 4) == 5
    assert next_streak(date(2025, 3, 7), today, 4) == 1


def test_weekly_bonus_every_seventh_day():
    assert bonus_for_streak(1) == settings.daily_bonus_base
    assert bonus_for_streak(6) == settings.daily_bonus_base
    assert bonus_for_streak(7) == settings.daily_bonus_base + settings.weekly_streak_bonus
    assert bonus_for_streak(14) == settings.daily_bonus_base + settings.weekly_streak_bonus


@pytest.mark.asyncio
async def test_first_claim_pays_base_bonus(db_session, make_user):
    user = await make_user()

    result = await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 9, 0))

    assert result.awarded == settings.daily_bonus_base
    assert result.streak == 1
    assert result.claimed_on == date(2025, 3, 10)
    assert await balance_of(db_session, user.id) == settings.daily_bonus_base
    assert await TransactionRecorder.sum_amounts(db_session, user.id) == settings.daily_bonus_base


@pytest.mark.asyncio
async def test_second_claim_same_day_is_refused(db_session, make_user):
    user = await make_user()
    await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 8, 0))

    with pytest.raises(DailyBonusAlreadyClaimedError) as exc:
        await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 20, 0))

    assert exc.value.status_code == 409
    assert await balance_of(db_session, user.id) == settings.daily_bonus_base


@pytest.mark.asyncio
async def test_local_midnight_starts_a_new_day(db_session, make_user):
    """23:59 and 00:01 Paris time are two different days, two minutes apart."""
    user = await make_user()

    # 22:59 UTC = 23:59 in Paris (CET)
    first = await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 22, 59))
    # 23:01 UTC = 00:01 the next day in Paris
    second = await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 23, 1))

    assert first.claimed_on == date(2025, 3, 10)
    assert second.claimed_on == date(2025, 3, 11)
    assert second.streak == 2
    assert await balance_of(db_session, user.id) == 2 * settings.daily_bonus_base


@pytest.mark.asyncio
async def test_not_a_rolling_window(db_session, make_user):
    """Early morning then late evening of the same local day: only one bonus."""
    user = await make_user()
    await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 0, 5))

    with pytest.raises(DailyBonusAlreadyClaimedError):
        await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 22, 30))


@pytest.mark.asyncio
async def test_gap_resets_streak(db_session, make_user):
    user = await make_user()
    await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 10, 9, 0))
    await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 11, 9, 0))

    result = await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 13, 9, 0))

    assert result.streak == 1


@pytest.mark.asyncio
async def test_seventh_consecutive_day_pays_weekly_bonus_and_unlocks_streak_achievement(db_session, make_user):
    user = await make_user()
    for day in range(1, 7):
        await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, day, 9, 0))

    result = await DailyBonusScheduler.claim(db_session, user.id, now=utc(2025, 3, 7, 9, 0))

    assert result.streak == 7
    assert result.awarded == settings.daily_bonus_base + settings.weekly_streak_bonus
    assert [a.achievement_id for a in result.achievements] == ["week_streak"]

    expected = 7 * settings.daily_bonus_base + settings.weekly_streak_bonus + 10
    assert result.balance == expected
    assert await balance_of(db_session, user.id) == expected
    assert await TransactionRecorder.sum_amounts(db_session, user.id) == expected


@pytest.mark.asyncio
async def test_status_reports_eligibility(db_session, make_user):
    user = await make_user()
    now = utc(2025, 3, 10, 9, 0)

    before = await DailyBonusScheduler.status(db_session, user.id, now=now)
    assert before["eligible"] is True
    assert before["next_bonus"] == settings.daily_bonus_base

    await DailyBonusScheduler.claim(db_session, user.id, now=now)

    after = await DailyBonusScheduler.status(db_session, user.id, now=now)
    assert after["eligible"] is False
    assert after["next_bonus"] == 0
    assert after["current_streak"] == 1
    assert after["last_login_date"] == date(2025, 3, 10)
