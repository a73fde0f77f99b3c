from engines.leitner import BOX_INTERVALS, MAX_BOX, MIN_BOX, advance, next_box
from engines.streak import reconcile, weekly_activity
from engines.gamification import ACHIEVEMENTS, add_xp, level_for, unlock_achievements

__all__ = [
    "BOX_INTERVALS",
    "MIN_BOX",
    "MAX_BOX",
    "advance",
    "next_box",
    "reconcile",
    "weekly_activity",
    "ACHIEVEMENTS",
    "add_xp",
    "level_for",
    "unlock_achievements",
]
