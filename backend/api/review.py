"""Review API

Due words, the Leitner box histogram and answer submission. A submission
that loses a race with a concurrent writer is re-run from scratch under a
bounded retry policy.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from pydantic import BaseModel, Field

from core.errors import raise_result
from core.logging import api_logger
from core.resilience import RetryPolicy
from engines.leitner import MAX_BOX, MIN_BOX
from engines.service import LeitnerService
from engines.types import LearningScope
from api.deps import get_review_retry_policy, get_scope, get_service
from api.stats import StatsResponse
from api.words import WordResponse

router = APIRouter()
log = api_logger()


class BoxCounts(BaseModel):
    boxes: dict[int, int]
    total: int
    due: int


class ReviewSubmit(BaseModel):
    item_id: UUID
    is_correct: bool
    idempotency_key: str | None = Field(None, max_length=100)


class ReviewResponse(BaseModel):
    item: WordResponse
    stats: StatsResponse
    xp_awarded: int
    leveled_up: bool
    new_achievements: list[str]
    replayed: bool
    attempts: int


@router.get("/due", response_model=list[WordResponse])
async def get_due_words(
    limit: int | None = Query(None, ge=1, le=500),
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """Words whose next review time has passed, most overdue first."""
    result = await service.get_due_items(scope.id)
    raise_result(result)
    due = result.unwrap()
    return due[:limit] if limit else due


@router.get("/boxes", response_model=BoxCounts)
async def get_box_counts(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    counts = await service.get_box_counts(scope.id)
    raise_result(counts)
    due = await service.get_due_items(scope.id)
    raise_result(due)
    boxes = counts.unwrap()
    return BoxCounts(boxes=boxes, total=sum(boxes.values()), due=len(due.unwrap()))


@router.get("/box/{box}", response_model=list[WordResponse])
async def get_box(
    box: int = Path(..., ge=MIN_BOX, le=MAX_BOX),
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_items_in_box(scope.id, box)
    raise_result(result)
    return result.unwrap()


@router.post("", response_model=ReviewResponse)
async def submit_review(
    data: ReviewSubmit,
    idempotency_header: str | None = Header(None, alias="Idempotency-Key"),
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
    policy: RetryPolicy = Depends(get_review_retry_policy),
):
    """Record one answer: move the word between boxes and update stats."""
    key = data.idempotency_key or idempotency_header
    outcome = await policy.execute(
        lambda: service.process_review(scope.id, data.item_id, data.is_correct, idempotency_key=key)
    )
    if outcome.attempts > 1:
        log.info("review_retried", attempts=outcome.attempts, succeeded=outcome.succeeded)
    raise_result(outcome.result)
    review = outcome.result.unwrap()
    return ReviewResponse(
        item=WordResponse.model_validate(review.item),
        stats=StatsResponse.model_validate(review.stats),
        xp_awarded=review.xp_awarded,
        leveled_up=review.leveled_up,
        new_achievements=list(review.new_achievements),
        replayed=review.replayed,
        attempts=outcome.attempts,
    )
