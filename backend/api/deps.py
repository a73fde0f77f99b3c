"""Shared route dependencies.

Tests swap ``get_store`` and ``get_clock`` through ``app.dependency_overrides``.
"""
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock, SystemClock
from core.config import settings
from core.database import get_db
from core.errors import raise_result
from core.resilience import RetryConfig, RetryPolicy
from core.security import get_current_user_id
from engines.service import LeitnerService
from engines.types import LearningScope
from storage import RecordStore, SqlRecordStore

_clock = SystemClock(settings.CALENDAR_TIMEZONE)


async def get_store(db: AsyncSession = Depends(get_db)) -> RecordStore:
    return SqlRecordStore(db)


def get_clock() -> Clock:
    return _clock


def get_service(
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> LeitnerService:
    return LeitnerService(
        store,
        clock,
        learned_words_policy=settings.LEARNED_WORDS_POLICY,
        default_daily_goal=settings.DEFAULT_DAILY_GOAL,
    )


async def get_scope(
    scope_id: UUID | None = Query(None, description="Defaults to the active scope"),
    user_id: UUID = Depends(get_current_user_id),
    service: LeitnerService = Depends(get_service),
) -> LearningScope:
    result = await service.resolve_scope(user_id, scope_id)
    raise_result(result)
    return result.unwrap()


def get_review_retry_policy() -> RetryPolicy:
    return RetryPolicy(RetryConfig(max_attempts=max(1, settings.REVIEW_CONFLICT_RETRIES)))
