"""Stats API

Streak, XP/level, daily goal, weekly activity and achievements for the
current scope. Reading stats on a new calendar day applies the daily
rollover before anything is returned.
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.errors import raise_result
from engines.service import (
    DAILY_GOAL_PRESETS,
    MAX_DAILY_GOAL,
    MIN_DAILY_GOAL,
    LeitnerService,
)
from engines.streak import daily_goal_progress
from engines.types import LearningScope
from api.deps import get_scope, get_service

router = APIRouter()


class StatsResponse(BaseModel):
    total_words: int
    learned_words: int
    streak: int
    today_reviewed: int
    today_correct: int
    total_reviewed: int
    total_correct: int
    last_active_date: date
    xp: int
    level: int
    achievements: list[str]
    daily_goal: int

    class Config:
        from_attributes = True


class ProgressResponse(BaseModel):
    level: int
    xp: int
    xp_in_level: int
    xp_for_next_level: int
    streak: int
    daily_goal: int
    today_reviewed: int
    today_correct: int
    daily_goal_percent: int
    today_accuracy: int
    overall_accuracy: int
    total_words: int
    learned_words: int

    class Config:
        from_attributes = True


class DayActivityResponse(BaseModel):
    date: date
    words_reviewed: int
    words_correct: int
    xp_earned: int

    class Config:
        from_attributes = True


class WeeklyResponse(BaseModel):
    days: list[DayActivityResponse]
    active_days: int
    history_streak: int

    class Config:
        from_attributes = True


class DailyGoalResponse(BaseModel):
    daily_goal: int
    today_reviewed: int
    percent: int
    reached: bool
    presets: list[int]
    min: int
    max: int


class DailyGoalUpdate(BaseModel):
    daily_goal: int = Field(..., ge=MIN_DAILY_GOAL, le=MAX_DAILY_GOAL)


class AchievementResponse(BaseModel):
    id: str
    dimension: str
    threshold: int
    min_reviews: int
    unlocked: bool


@router.get("", response_model=StatsResponse)
async def get_stats(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_stats(scope.id)
    raise_result(result)
    return result.unwrap()


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """Level, XP inside the level, accuracy and daily-goal completion."""
    result = await service.get_progress(scope.id)
    raise_result(result)
    return result.unwrap()


@router.get("/weekly", response_model=WeeklyResponse)
async def get_weekly(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_weekly_activity(scope.id)
    raise_result(result)
    return result.unwrap()


def _daily_goal_view(stats) -> DailyGoalResponse:
    percent = daily_goal_progress(stats)
    return DailyGoalResponse(
        daily_goal=stats.daily_goal,
        today_reviewed=stats.today_reviewed,
        percent=percent,
        reached=percent >= 100,
        presets=list(DAILY_GOAL_PRESETS),
        min=MIN_DAILY_GOAL,
        max=MAX_DAILY_GOAL,
    )


@router.get("/daily", response_model=DailyGoalResponse)
async def get_daily_goal(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_stats(scope.id)
    raise_result(result)
    return _daily_goal_view(result.unwrap())


@router.put("/daily-goal", response_model=DailyGoalResponse)
async def set_daily_goal(
    data: DailyGoalUpdate,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.set_daily_goal(scope.id, data.daily_goal)
    raise_result(result)
    return _daily_goal_view(result.unwrap())


@router.get("/achievements", response_model=list[AchievementResponse])
async def get_achievements(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """The full catalog with an unlocked flag per entry."""
    result = await service.get_achievements(scope.id)
    raise_result(result)
    return [
        AchievementResponse(
            id=status.achievement.id,
            dimension=status.achievement.dimension,
            threshold=status.achievement.threshold,
            min_reviews=status.achievement.min_reviews,
            unlocked=status.unlocked,
        )
        for status in result.unwrap()
    ]
