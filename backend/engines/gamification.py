"""Experience, Levels and Achievements

Level is always derived from cumulative XP and never stored independently.
Achievements are a static catalog; evaluating it only ever adds ids.
"""
from dataclasses import dataclass, replace
from typing import Literal

from core.logging import engine_logger
from engines.streak import accuracy
from engines.types import UserStats

log = engine_logger()

XP_PER_CORRECT = 10
XP_PER_INCORRECT = 2
XP_PER_NEW_WORD = 5
XP_PER_LEVEL = 100


def level_for(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def progress_within_level(xp: int) -> int:
    return xp % XP_PER_LEVEL


def xp_for_next_level(level: int) -> int:
    return level * XP_PER_LEVEL


def review_xp(is_correct: bool) -> int:
    return XP_PER_CORRECT if is_correct else XP_PER_INCORRECT


def add_xp(stats: UserStats, amount: int) -> tuple[UserStats, bool]:
    """Add XP and recompute the level.

    Returns the new stats and whether the level rose above the previously
    derived one.
    """
    if amount < 0:
        raise ValueError(f"XP award must be non-negative, got {amount}")
    previous_level = level_for(stats.xp)
    xp = stats.xp + amount
    level = level_for(xp)
    leveled_up = level > previous_level
    if leveled_up:
        log.info("level_up", scope_id=str(stats.scope_id), level=level, xp=xp)
    return replace(stats, xp=xp, level=level), leveled_up


# ----------------------------------------------------------------------------
# Achievements
# ----------------------------------------------------------------------------

Dimension = Literal["words", "streak", "reviews", "accuracy", "level"]


@dataclass(frozen=True, slots=True)
class Achievement:
    id: str
    dimension: Dimension
    threshold: int
    min_reviews: int = 0


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement("first_word", "words", 1),
    Achievement("word_10", "words", 10),
    Achievement("word_50", "words", 50),
    Achievement("word_100", "words", 100),
    Achievement("word_250", "words", 250),
    Achievement("word_500", "words", 500),
    Achievement("word_1000", "words", 1000),
    Achievement("word_2000", "words", 2000),

    Achievement("streak_3", "streak", 3),
    Achievement("streak_7", "streak", 7),
    Achievement("streak_14", "streak", 14),
    Achievement("streak_30", "streak", 30),
    Achievement("streak_60", "streak", 60),
    Achievement("streak_100", "streak", 100),
    Achievement("streak_365", "streak", 365),

    Achievement("reviews_50", "reviews", 50),
    Achievement("reviews_100", "reviews", 100),
    Achievement("reviews_250", "reviews", 250),
    Achievement("reviews_500", "reviews", 500),
    Achievement("reviews_1000", "reviews", 1000),
    Achievement("reviews_2500", "reviews", 2500),
    Achievement("reviews_5000", "reviews", 5000),

    # Accuracy means little on a handful of answers
    Achievement("accuracy_80", "accuracy", 80, min_reviews=100),
    Achievement("accuracy_90", "accuracy", 90, min_reviews=100),
    Achievement("accuracy_95", "accuracy", 95, min_reviews=200),

    Achievement("level_5", "level", 5),
    Achievement("level_10", "level", 10),
    Achievement("level_20", "level", 20),
    Achievement("level_30", "level", 30),
    Achievement("level_50", "level", 50),
    Achievement("level_100", "level", 100),
)

ACHIEVEMENTS_BY_ID = {a.id: a for a in ACHIEVEMENTS}


def dimension_values(stats: UserStats) -> dict[str, int]:
    return {
        "words": stats.total_words,
        "streak": stats.streak,
        "reviews": stats.total_reviewed,
        "accuracy": accuracy(stats.total_correct, stats.total_reviewed),
        "level": level_for(stats.xp),
    }


def qualifies(achievement: Achievement, values: dict[str, int], total_reviews: int) -> bool:
    if total_reviews < achievement.min_reviews:
        return False
    return values[achievement.dimension] >= achievement.threshold


def evaluate_achievements(stats: UserStats) -> list[str]:
    """Ids that qualify now and are not yet unlocked, in catalog order."""
    values = dimension_values(stats)
    unlocked = set(stats.achievements)
    return [
        a.id for a in ACHIEVEMENTS
        if a.id not in unlocked and qualifies(a, values, stats.total_reviewed)
    ]


def unlock_achievements(stats: UserStats) -> tuple[UserStats, list[str]]:
    new_ids = evaluate_achievements(stats)
    if not new_ids:
        return stats, []
    log.info("achievements_unlocked", scope_id=str(stats.scope_id), ids=new_ids)
    return replace(stats, achievements=stats.achievements + tuple(new_ids)), new_ids
