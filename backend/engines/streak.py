"""Daily Rollover and Streaks

Stats are reconciled lazily: the first time they are read on a new calendar
day the daily counters reset and the streak either grows (the previous
active day was yesterday and had reviews) or drops to zero. A user returning
after several idle days gets one reconciliation, not one per missed day.
"""
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, timedelta

from core.logging import engine_logger
from engines.types import DailyStat, UserStats

log = engine_logger()

WEEK_DAYS = 7


def yesterday(today: date) -> date:
    return today - timedelta(days=1)


def reconcile(stats: UserStats, today: date) -> UserStats:
    if stats.last_active_date == today:
        return stats

    if stats.last_active_date == yesterday(today) and stats.today_reviewed > 0:
        streak = stats.streak + 1
    else:
        streak = 0

    log.info(
        "daily_rollover",
        scope_id=str(stats.scope_id),
        last_active=stats.last_active_date.isoformat(),
        today=today.isoformat(),
        streak_before=stats.streak,
        streak_after=streak,
    )
    return replace(
        stats,
        streak=streak,
        today_reviewed=0,
        today_correct=0,
        last_active_date=today,
    )


def record_review(stats: UserStats, is_correct: bool, today: date, learned: bool) -> UserStats:
    """Count one review against today's and the lifetime counters.

    ``learned`` says whether this review bumps ``learned_words``; the policy
    deciding that lives with the caller.
    """
    return replace(
        stats,
        today_reviewed=stats.today_reviewed + 1,
        today_correct=stats.today_correct + (1 if is_correct else 0),
        total_reviewed=stats.total_reviewed + 1,
        total_correct=stats.total_correct + (1 if is_correct else 0),
        learned_words=stats.learned_words + (1 if learned else 0),
        last_active_date=today,
    )


def accuracy(correct: int, reviewed: int) -> int:
    """Whole-number percentage, 0 when nothing was reviewed."""
    if reviewed <= 0:
        return 0
    return round(correct * 100 / reviewed)


def current_streak_from_history(daily_stats: Iterable[DailyStat], today: date) -> int:
    """Consecutive days with reviews ending today, or yesterday if today is still empty."""
    active = {d.date for d in daily_stats if d.words_reviewed > 0}
    day = today if today in active else yesterday(today)
    streak = 0
    while day in active:
        streak += 1
        day = yesterday(day)
    return streak


@dataclass(frozen=True, slots=True)
class DayActivity:
    date: date
    words_reviewed: int
    words_correct: int
    xp_earned: int


def weekly_activity(daily_stats: Iterable[DailyStat], today: date) -> list[DayActivity]:
    """The last seven days oldest first, zero-filled where nothing happened."""
    by_date = {d.date: d for d in daily_stats}
    week = []
    for offset in range(WEEK_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        row = by_date.get(day)
        week.append(DayActivity(
            date=day,
            words_reviewed=row.words_reviewed if row else 0,
            words_correct=row.words_correct if row else 0,
            xp_earned=row.xp_earned if row else 0,
        ))
    return week


def daily_goal_progress(stats: UserStats) -> int:
    """Percent of today's goal reached, capped at 100."""
    if stats.daily_goal <= 0:
        return 100
    return min(100, round(stats.today_reviewed * 100 / stats.daily_goal))
