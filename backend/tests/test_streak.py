from datetime import date, timedelta
from uuid import uuid4

import pytest

from engines.streak import (
    accuracy,
    current_streak_from_history,
    daily_goal_progress,
    reconcile,
    record_review,
    weekly_activity,
)
from engines.types import DailyStat, UserStats

TODAY = date(2026, 3, 10)
SCOPE = uuid4()


def stats(**kwargs) -> UserStats:
    kwargs.setdefault("last_active_date", TODAY)
    return UserStats(scope_id=SCOPE, **kwargs)


class TestReconcile:

    def test_same_day_is_unchanged(self):
        current = stats(streak=4, today_reviewed=7, today_correct=5)
        assert reconcile(current, TODAY) is current

    def test_active_yesterday_extends_streak(self):
        current = stats(last_active_date=TODAY - timedelta(days=1), streak=3, today_reviewed=5, today_correct=4)
        reconciled = reconcile(current, TODAY)

        assert reconciled.streak == 4
        assert reconciled.today_reviewed == 0
        assert reconciled.today_correct == 0
        assert reconciled.last_active_date == TODAY

    def test_yesterday_without_reviews_breaks_streak(self):
        current = stats(last_active_date=TODAY - timedelta(days=1), streak=3, today_reviewed=0)
        assert reconcile(current, TODAY).streak == 0

    def test_gap_of_several_days_resets(self):
        current = stats(last_active_date=TODAY - timedelta(days=3), streak=10, today_reviewed=8)
        reconciled = reconcile(current, TODAY)

        assert reconciled.streak == 0
        assert reconciled.today_reviewed == 0
        assert reconciled.last_active_date == TODAY

    def test_lifetime_counters_survive_rollover(self):
        current = stats(
            last_active_date=TODAY - timedelta(days=1),
            today_reviewed=2,
            total_reviewed=40,
            total_correct=30,
            xp=420,
        )
        reconciled = reconcile(current, TODAY)

        assert (reconciled.total_reviewed, reconciled.total_correct, reconciled.xp) == (40, 30, 420)


class TestRecordReview:

    def test_counts_today_and_lifetime(self):
        updated = record_review(stats(), True, TODAY, learned=True)

        assert updated.today_reviewed == 1
        assert updated.today_correct == 1
        assert updated.total_reviewed == 1
        assert updated.total_correct == 1
        assert updated.learned_words == 1

    def test_wrong_answer_counts_review_only(self):
        updated = record_review(stats(), False, TODAY, learned=False)

        assert updated.today_reviewed == 1
        assert updated.today_correct == 0
        assert updated.learned_words == 0


@pytest.mark.parametrize("correct,reviewed,expected", [(0, 0, 0), (1, 3, 33), (2, 3, 67), (10, 10, 100)])
def test_accuracy(correct, reviewed, expected):
    assert accuracy(correct, reviewed) == expected


def test_daily_goal_progress_caps_at_hundred():
    assert daily_goal_progress(stats(daily_goal=10, today_reviewed=5)) == 50
    assert daily_goal_progress(stats(daily_goal=10, today_reviewed=25)) == 100


def _day(offset: int, reviewed: int = 3) -> DailyStat:
    return DailyStat(scope_id=SCOPE, date=TODAY - timedelta(days=offset), words_reviewed=reviewed, words_correct=1)


class TestHistory:

    def test_streak_counts_back_from_today(self):
        assert current_streak_from_history([_day(0), _day(1), _day(2), _day(4)], TODAY) == 3

    def test_streak_counts_back_from_yesterday_when_today_empty(self):
        assert current_streak_from_history([_day(1), _day(2)], TODAY) == 2

    def test_days_without_reviews_break_history(self):
        assert current_streak_from_history([_day(0), _day(1, reviewed=0), _day(2)], TODAY) == 1

    def test_weekly_activity_zero_fills_oldest_first(self):
        week = weekly_activity([_day(0, reviewed=4), _day(3, reviewed=2), _day(9)], TODAY)

        assert len(week) == 7
        assert week[0].date == TODAY - timedelta(days=6)
        assert week[-1].date == TODAY
        assert [d.words_reviewed for d in week] == [0, 0, 0, 2, 0, 0, 4]
