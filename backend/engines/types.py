"""Domain records shared by the scheduler engines and the record stores.

Records are immutable; engines return new instances via ``dataclasses.replace``.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

# Item columns a caller may edit, and the ones only a review may write
CONTENT_FIELDS = frozenset({
    "source_text", "target_text", "example_sentences", "category_id", "mnemonic",
})
SCHEDULING_FIELDS = (
    "box", "next_review_at", "times_reviewed", "times_correct", "times_incorrect", "last_reviewed_at",
)


@dataclass(frozen=True, slots=True)
class LearningScope:
    """A user's chosen source → target language pair."""
    id: UUID
    user_id: UUID
    source_language: str
    target_language: str
    is_active: bool
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ItemFields:
    """Caller-supplied content of a new learnable item."""
    source_text: str
    target_text: str
    source_language: str
    target_language: str
    example_sentences: tuple[str, ...] = ()
    category_id: str | None = None
    mnemonic: str | None = None


@dataclass(frozen=True, slots=True)
class LearnableItem:
    id: UUID
    scope_id: UUID
    source_text: str
    target_text: str
    source_language: str
    target_language: str
    box: int
    next_review_at: datetime
    created_at: datetime
    example_sentences: tuple[str, ...] = ()
    category_id: str | None = None
    mnemonic: str | None = None
    times_reviewed: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    last_reviewed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class UserStats:
    scope_id: UUID
    last_active_date: date
    total_words: int = 0
    learned_words: int = 0
    streak: int = 0
    today_reviewed: int = 0
    today_correct: int = 0
    total_reviewed: int = 0
    total_correct: int = 0
    xp: int = 0
    level: int = 1
    achievements: tuple[str, ...] = ()
    daily_goal: int = 10
    version: int = 0


@dataclass(frozen=True, slots=True)
class DailyStat:
    scope_id: UUID
    date: date
    words_reviewed: int = 0
    words_correct: int = 0
    xp_earned: int = 0


@dataclass(frozen=True, slots=True)
class ReviewReceipt:
    """Marks an idempotency key as consumed by one review submission."""
    scope_id: UUID
    idempotency_key: str
    item_id: UUID
    is_correct: bool
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ReviewOutcome:
    item: LearnableItem
    stats: UserStats
    leveled_up: bool = False
    new_achievements: tuple[str, ...] = ()
    xp_awarded: int = 0
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class ImportResult:
    added: list[LearnableItem] = field(default_factory=list)
    duplicates: list[ItemFields] = field(default_factory=list)
