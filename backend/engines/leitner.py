"""Leitner Box Scheduling

Five boxes with fixed review delays. A correct answer promotes an item one
box (capped at the top box), a wrong answer sends it back to box 1. Items in
the top box keep cycling on the longest delay; nothing leaves the rotation.
"""
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta

from core.logging import engine_logger
from engines.types import LearnableItem

log = engine_logger()

MIN_BOX = 1
MAX_BOX = 5

BOX_INTERVALS: dict[int, timedelta] = {
    1: timedelta(hours=1),
    2: timedelta(hours=5),
    3: timedelta(days=1),
    4: timedelta(days=5),
    5: timedelta(days=30),
}


def next_box(box: int, is_correct: bool) -> int:
    if not MIN_BOX <= box <= MAX_BOX:
        raise ValueError(f"box must be within {MIN_BOX}..{MAX_BOX}, got {box}")
    return min(MAX_BOX, box + 1) if is_correct else MIN_BOX


def advance(item: LearnableItem, is_correct: bool, now: datetime) -> LearnableItem:
    """Apply one review outcome to an item.

    Only the box, the next review time, the review counters and
    ``last_reviewed_at`` change.
    """
    box = next_box(item.box, is_correct)
    advanced = replace(
        item,
        box=box,
        next_review_at=now + BOX_INTERVALS[box],
        times_reviewed=item.times_reviewed + 1,
        times_correct=item.times_correct + (1 if is_correct else 0),
        times_incorrect=item.times_incorrect + (0 if is_correct else 1),
        last_reviewed_at=now,
    )
    log.debug("item_advanced", item_id=str(item.id), old_box=item.box, new_box=box, correct=is_correct)
    return advanced


def entered_top_box(before: LearnableItem, after: LearnableItem) -> bool:
    return before.box < MAX_BOX and after.box == MAX_BOX


# ----------------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------------

def is_due(item: LearnableItem, now: datetime) -> bool:
    return item.next_review_at <= now


def due_items(items: Iterable[LearnableItem], now: datetime) -> list[LearnableItem]:
    """Items whose next review time has passed, in input order."""
    return [item for item in items if is_due(item, now)]


def order_for_session(items: Iterable[LearnableItem], now: datetime) -> list[LearnableItem]:
    """Most overdue first, lower boxes breaking ties."""
    return sorted(items, key=lambda i: (i.next_review_at - now, i.box))


def counts_by_box(items: Iterable[LearnableItem]) -> dict[int, int]:
    counts = {box: 0 for box in range(MIN_BOX, MAX_BOX + 1)}
    for item in items:
        counts[item.box] += 1
    return counts


def items_in_box(items: Iterable[LearnableItem], box: int) -> list[LearnableItem]:
    return [item for item in items if item.box == box]
