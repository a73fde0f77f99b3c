from models.leitner import LearningScope, Word, UserStats, DailyStat, ReviewReceipt

__all__ = [
    "LearningScope",
    "Word",
    "UserStats",
    "DailyStat",
    "ReviewReceipt",
]
