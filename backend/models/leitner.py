from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, Date, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from core.database import Base, GUID, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LearningScope(Base):
    """A user's source → target language pair; owns words and stats"""
    __tablename__ = "learning_scopes"
    __table_args__ = (
        UniqueConstraint("user_id", "source_language", "target_language", name="uq_scope_language_pair"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    user_id = Column(GUID, nullable=False, index=True)
    source_language = Column(String(10), nullable=False)
    target_language = Column(String(10), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=_utcnow)

    words = relationship("Word", back_populates="scope", cascade="all, delete-orphan")
    stats = relationship("UserStats", back_populates="scope", uselist=False, cascade="all, delete-orphan")
    daily_stats = relationship("DailyStat", back_populates="scope", cascade="all, delete-orphan")


class Word(Base):
    """A learnable item and its Leitner scheduling state"""
    __tablename__ = "words"
    __table_args__ = (
        UniqueConstraint("scope_id", "source_text", name="uq_word_source_text"),
        Index("ix_words_scope_next_review", "scope_id", "next_review_at"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    scope_id = Column(GUID, ForeignKey("learning_scopes.id", ondelete="CASCADE"), nullable=False)
    source_text = Column(String(500), nullable=False)
    target_text = Column(String(500), nullable=False)
    source_language = Column(String(10), nullable=False)
    target_language = Column(String(10), nullable=False)
    example_sentences = Column(JSON, default=list)
    category_id = Column(String(100))
    mnemonic = Column(Text)
    box = Column(Integer, nullable=False, default=1)  # 1-5
    next_review_at = Column(UTCDateTime, nullable=False)
    times_reviewed = Column(Integer, nullable=False, default=0)
    times_correct = Column(Integer, nullable=False, default=0)
    times_incorrect = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=_utcnow)
    last_reviewed_at = Column(UTCDateTime)

    scope = relationship("LearningScope", back_populates="words")


class UserStats(Base):
    """Aggregate counters per scope; ``version`` guards concurrent writers"""
    __tablename__ = "user_stats"

    scope_id = Column(GUID, ForeignKey("learning_scopes.id", ondelete="CASCADE"), primary_key=True)
    total_words = Column(Integer, nullable=False, default=0)
    learned_words = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)
    today_reviewed = Column(Integer, nullable=False, default=0)
    today_correct = Column(Integer, nullable=False, default=0)
    total_reviewed = Column(Integer, nullable=False, default=0)
    total_correct = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date, nullable=False)
    xp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)  # cached for queries; always recomputed from xp
    achievements = Column(JSON, default=list)
    daily_goal = Column(Integer, nullable=False, default=10)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow)

    scope = relationship("LearningScope", back_populates="stats")


class DailyStat(Base):
    """Per-day activity; repeated writes for one date accumulate"""
    __tablename__ = "daily_stats"
    __table_args__ = (
        UniqueConstraint("scope_id", "date", name="uq_daily_stat_scope_date"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    scope_id = Column(GUID, ForeignKey("learning_scopes.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    words_reviewed = Column(Integer, nullable=False, default=0)
    words_correct = Column(Integer, nullable=False, default=0)
    xp_earned = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=_utcnow)

    scope = relationship("LearningScope", back_populates="daily_stats")


class ReviewReceipt(Base):
    """Consumed client idempotency keys for review submissions"""
    __tablename__ = "review_receipts"
    __table_args__ = (
        UniqueConstraint("scope_id", "idempotency_key", name="uq_review_receipt_key"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    scope_id = Column(GUID, ForeignKey("learning_scopes.id", ondelete="CASCADE"), nullable=False)
    idempotency_key = Column(String(100), nullable=False)
    item_id = Column(GUID, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow)
