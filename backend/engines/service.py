"""Leitner Service

The operations exposed to the HTTP layer. Each public method is one unit of
work against a RecordStore: it either commits every write it staged or
rolls all of them back and returns the error.

Review flow:
    1. Replay check on the idempotency key
    2. Load the item and today's reconciled stats
    3. Move the item between boxes
    4. Count the review, award XP, unlock achievements
    5. Conditional writes on item and stats, daily activity, receipt
    6. Commit
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Literal
from uuid import UUID

from core.clock import Clock, SystemClock
from core.errors import (
    AppError,
    Ok,
    Result,
    duplicate_key,
    ensure,
    idempotency_key_reused,
    not_found,
    out_of_range,
    required_field,
    sequence_results,
    validation_error,
)
from core.logging import srs_logger
from engines import gamification, leitner, streak
from engines.types import (
    CONTENT_FIELDS,
    ImportResult,
    ItemFields,
    LearnableItem,
    LearningScope,
    ReviewOutcome,
    ReviewReceipt,
    UserStats,
)
from storage.base import RecordStore

log = srs_logger()

LearnedWordsPolicy = Literal["correct_answer", "top_box"]

MIN_DAILY_GOAL = 1
MAX_DAILY_GOAL = 200
DAILY_GOAL_PRESETS = (5, 10, 15, 20, 30, 50)

# Window used to rebuild the streak from daily activity
HISTORY_DAYS = 366

EDITABLE_FIELDS = CONTENT_FIELDS

ORIGIN = "service.leitner"


@dataclass(frozen=True, slots=True)
class Progress:
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


@dataclass(frozen=True, slots=True)
class WeeklyActivity:
    days: list[streak.DayActivity]
    active_days: int
    history_streak: int


@dataclass(frozen=True, slots=True)
class AchievementStatus:
    achievement: gamification.Achievement
    unlocked: bool


class LeitnerService:

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        learned_words_policy: LearnedWordsPolicy = "correct_answer",
        default_daily_goal: int = 10,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.learned_words_policy = learned_words_policy
        self.default_daily_goal = default_daily_goal

    async def _finish(self, result: Result) -> Result:
        """Commit on success, roll back on failure."""
        if result.is_err():
            await self.store.rollback()
            return result
        committed = await self.store.commit()
        if committed.is_err():
            return committed
        return result

    async def _require_scope(self, scope_id: UUID) -> Result[LearningScope, AppError]:
        return await self.store.get_scope(scope_id)

    async def _load_stats(self, scope_id: UUID) -> Result[UserStats, AppError]:
        """Stats for the scope, created on first use and rolled over to today."""
        today = self.clock.today()
        found = await self.store.get_stats(scope_id)
        if found.is_err():
            return found
        stats = found.unwrap()

        if stats is None:
            items = await self.store.list_items(scope_id)
            if items.is_err():
                return items
            return await self.store.insert_stats(UserStats(
                scope_id=scope_id,
                last_active_date=today,
                total_words=len(items.unwrap()),
                daily_goal=self.default_daily_goal,
            ))

        reconciled = streak.reconcile(stats, today)
        if reconciled == stats:
            return Ok(stats)
        return await self.store.save_stats(reconciled, expected_version=stats.version)

    # -------------------------------------------------------------------------
    # Reviews
    # -------------------------------------------------------------------------

    async def process_review(
        self,
        scope_id: UUID,
        item_id: UUID,
        is_correct: bool,
        idempotency_key: str | None = None,
    ) -> Result[ReviewOutcome, AppError]:
        return await self._finish(
            await self._process_review(scope_id, item_id, is_correct, idempotency_key)
        )

    async def _process_review(
        self,
        scope_id: UUID,
        item_id: UUID,
        is_correct: bool,
        idempotency_key: str | None,
    ) -> Result[ReviewOutcome, AppError]:
        now = self.clock.now()
        today = self.clock.today()

        if idempotency_key:
            receipt = await self.store.get_receipt(scope_id, idempotency_key)
            if receipt.is_err():
                return receipt
            if receipt.unwrap() is not None:
                return await self._replay(receipt.unwrap(), item_id, is_correct)

        loaded_item = await self.store.get_item(scope_id, item_id)
        if loaded_item.is_err():
            return loaded_item
        item = loaded_item.unwrap()

        loaded_stats = await self._load_stats(scope_id)
        if loaded_stats.is_err():
            return loaded_stats
        stats = loaded_stats.unwrap()

        advanced = leitner.advance(item, is_correct, now)
        if self.learned_words_policy == "top_box":
            learned = leitner.entered_top_box(item, advanced)
        else:
            learned = is_correct

        xp = gamification.review_xp(is_correct)
        updated = streak.record_review(stats, is_correct, today, learned)
        updated, leveled_up = gamification.add_xp(updated, xp)
        updated, new_ids = gamification.unlock_achievements(updated)

        saved_item = await self.store.update_item(advanced, expected_times_reviewed=item.times_reviewed)
        if saved_item.is_err():
            return saved_item
        saved_stats = await self.store.save_stats(updated, expected_version=stats.version)
        if saved_stats.is_err():
            return saved_stats

        daily = await self.store.append_daily_stat(
            scope_id, today, words_reviewed=1, words_correct=int(is_correct), xp_earned=xp
        )
        if daily.is_err():
            return daily

        if idempotency_key:
            stored = await self.store.insert_receipt(ReviewReceipt(
                scope_id=scope_id,
                idempotency_key=idempotency_key,
                item_id=item_id,
                is_correct=is_correct,
                created_at=now,
            ))
            if stored.is_err():
                return stored

        log.info(
            "review_processed",
            scope_id=str(scope_id),
            item_id=str(item_id),
            correct=is_correct,
            old_box=item.box,
            new_box=advanced.box,
            xp=xp,
            leveled_up=leveled_up,
            new_achievements=new_ids,
        )
        return Ok(ReviewOutcome(
            item=saved_item.unwrap(),
            stats=saved_stats.unwrap(),
            leveled_up=leveled_up,
            new_achievements=tuple(new_ids),
            xp_awarded=xp,
        ))

    async def _replay(
        self, receipt: ReviewReceipt, item_id: UUID, is_correct: bool
    ) -> Result[ReviewOutcome, AppError]:
        if receipt.item_id != item_id or receipt.is_correct != is_correct:
            return idempotency_key_reused(receipt.idempotency_key, origin=ORIGIN)
        item = await self.store.get_item(receipt.scope_id, item_id)
        if item.is_err():
            return item
        stats = await self._load_stats(receipt.scope_id)
        if stats.is_err():
            return stats
        log.info("review_replayed", scope_id=str(receipt.scope_id), item_id=str(item_id))
        return Ok(ReviewOutcome(item=item.unwrap(), stats=stats.unwrap(), replayed=True))

    async def get_due_items(
        self, scope_id: UUID, now: datetime | None = None
    ) -> Result[list[LearnableItem], AppError]:
        """Due items, most overdue first."""
        now = now or self.clock.now()
        items = await self._scope_items(scope_id)
        return items.map(lambda found: leitner.order_for_session(leitner.due_items(found, now), now))

    async def get_box_counts(self, scope_id: UUID) -> Result[dict[int, int], AppError]:
        items = await self._scope_items(scope_id)
        return items.map(leitner.counts_by_box)

    async def get_items_in_box(self, scope_id: UUID, box: int) -> Result[list[LearnableItem], AppError]:
        if not leitner.MIN_BOX <= box <= leitner.MAX_BOX:
            return out_of_range("box", box, leitner.MIN_BOX, leitner.MAX_BOX, origin=ORIGIN)
        items = await self._scope_items(scope_id)
        return items.map(lambda found: leitner.items_in_box(found, box))

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def _scope_items(self, scope_id: UUID) -> Result[list[LearnableItem], AppError]:
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        return await self.store.list_items(scope_id)

    async def list_items(self, scope_id: UUID) -> Result[list[LearnableItem], AppError]:
        return await self._scope_items(scope_id)

    async def get_item(self, scope_id: UUID, item_id: UUID) -> Result[LearnableItem, AppError]:
        return await self.store.get_item(scope_id, item_id)

    async def add_item(self, scope_id: UUID, fields: ItemFields) -> Result[LearnableItem, AppError]:
        return await self._finish(await self._add_item(scope_id, fields))

    async def _add_item(self, scope_id: UUID, fields: ItemFields) -> Result[LearnableItem, AppError]:
        checked = _check_fields(fields)
        if checked.is_err():
            return checked
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        loaded = await self._load_stats(scope_id)
        if loaded.is_err():
            return loaded
        stats = loaded.unwrap()

        inserted = await self.store.insert_item(scope_id, fields, self.clock.now())
        if inserted.is_err():
            return inserted

        updated = replace(stats, total_words=stats.total_words + 1)
        updated, _ = gamification.add_xp(updated, gamification.XP_PER_NEW_WORD)
        updated, _ = gamification.unlock_achievements(updated)
        saved = await self.store.save_stats(updated, expected_version=stats.version)
        if saved.is_err():
            return saved
        daily = await self.store.append_daily_stat(
            scope_id, self.clock.today(), xp_earned=gamification.XP_PER_NEW_WORD
        )
        if daily.is_err():
            return daily

        log.info("item_added", scope_id=str(scope_id), item_id=str(inserted.unwrap().id))
        return inserted

    async def import_items_bulk(
        self, scope_id: UUID, entries: list[ItemFields]
    ) -> Result[ImportResult, AppError]:
        return await self._finish(await self._import_items_bulk(scope_id, entries))

    async def _import_items_bulk(
        self, scope_id: UUID, entries: list[ItemFields]
    ) -> Result[ImportResult, AppError]:
        checked = sequence_results([_check_fields(entry) for entry in entries])
        if checked.is_err():
            return checked
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        loaded = await self._load_stats(scope_id)
        if loaded.is_err():
            return loaded
        stats = loaded.unwrap()

        imported = await self.store.insert_items_bulk(scope_id, entries, self.clock.now())
        if imported.is_err():
            return imported
        result = imported.unwrap()

        if result.added:
            updated = replace(stats, total_words=stats.total_words + len(result.added))
            updated, _ = gamification.unlock_achievements(updated)
            saved = await self.store.save_stats(updated, expected_version=stats.version)
            if saved.is_err():
                return saved

        log.info(
            "items_imported",
            scope_id=str(scope_id),
            added=len(result.added),
            duplicates=len(result.duplicates),
        )
        return Ok(result)

    async def update_item(self, scope_id: UUID, item_id: UUID, **changes) -> Result[LearnableItem, AppError]:
        """Edit item content; scheduling state is not editable."""
        return await self._finish(await self._update_item(scope_id, item_id, changes))

    async def _update_item(self, scope_id: UUID, item_id: UUID, changes: dict) -> Result[LearnableItem, AppError]:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            return validation_error(
                f"Fields not editable: {', '.join(sorted(unknown))}", origin=ORIGIN
            )
        for name in ("source_text", "target_text"):
            if name in changes and not (changes[name] or "").strip():
                return required_field(name, origin=ORIGIN)
        if "example_sentences" in changes:
            changes["example_sentences"] = tuple(changes["example_sentences"] or ())

        current = await self.store.get_item(scope_id, item_id)
        if current.is_err():
            return current
        item = current.unwrap()

        text = changes.get("source_text", item.source_text)
        if text != item.source_text:
            clash = await self.store.find_item_by_source_text(scope_id, text)
            if clash.is_err():
                return clash
            if clash.unwrap() is not None:
                return duplicate_key("LearnableItem", "source_text", text, origin=ORIGIN)

        return await self.store.update_item_content(scope_id, item_id, changes)

    async def delete_item(self, scope_id: UUID, item_id: UUID) -> Result[None, AppError]:
        return await self._finish(await self._delete_item(scope_id, item_id))

    async def _delete_item(self, scope_id: UUID, item_id: UUID) -> Result[None, AppError]:
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        loaded = await self._load_stats(scope_id)
        if loaded.is_err():
            return loaded
        stats = loaded.unwrap()

        deleted = await self.store.delete_item(scope_id, item_id)
        if deleted.is_err():
            return deleted

        updated = replace(stats, total_words=max(0, stats.total_words - 1))
        saved = await self.store.save_stats(updated, expected_version=stats.version)
        if saved.is_err():
            return saved
        log.info("item_deleted", scope_id=str(scope_id), item_id=str(item_id))
        return Ok(None)

    # -------------------------------------------------------------------------
    # Stats and progress
    # -------------------------------------------------------------------------

    async def get_stats(self, scope_id: UUID) -> Result[UserStats, AppError]:
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        return await self._finish(await self._load_stats(scope_id))

    async def set_daily_goal(self, scope_id: UUID, goal: int) -> Result[UserStats, AppError]:
        return await self._finish(await self._set_daily_goal(scope_id, goal))

    async def _set_daily_goal(self, scope_id: UUID, goal: int) -> Result[UserStats, AppError]:
        in_range = ensure(
            MIN_DAILY_GOAL <= goal <= MAX_DAILY_GOAL,
            out_of_range("daily_goal", goal, MIN_DAILY_GOAL, MAX_DAILY_GOAL, origin=ORIGIN),
        )
        if in_range.is_err():
            return in_range
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        loaded = await self._load_stats(scope_id)
        if loaded.is_err():
            return loaded
        stats = loaded.unwrap()
        return await self.store.save_stats(replace(stats, daily_goal=goal), expected_version=stats.version)

    async def get_progress(self, scope_id: UUID) -> Result[Progress, AppError]:
        loaded = await self.get_stats(scope_id)
        return loaded.map(progress_for)

    async def get_weekly_activity(self, scope_id: UUID) -> Result[WeeklyActivity, AppError]:
        scope = await self._require_scope(scope_id)
        if scope.is_err():
            return scope
        today = self.clock.today()
        history = await self.store.list_daily_stats(scope_id, since=today - timedelta(days=HISTORY_DAYS))
        if history.is_err():
            return history
        rows = history.unwrap()
        days = streak.weekly_activity(rows, today)
        return Ok(WeeklyActivity(
            days=days,
            active_days=sum(1 for d in days if d.words_reviewed > 0),
            history_streak=streak.current_streak_from_history(rows, today),
        ))

    async def get_achievements(self, scope_id: UUID) -> Result[list[AchievementStatus], AppError]:
        loaded = await self.get_stats(scope_id)
        if loaded.is_err():
            return loaded
        unlocked = set(loaded.unwrap().achievements)
        return Ok([
            AchievementStatus(achievement=a, unlocked=a.id in unlocked)
            for a in gamification.ACHIEVEMENTS
        ])

    # -------------------------------------------------------------------------
    # Scopes
    # -------------------------------------------------------------------------

    async def list_scopes(self, user_id: UUID) -> Result[list[LearningScope], AppError]:
        return await self.store.list_scopes(user_id)

    async def create_scope(
        self, user_id: UUID, source_language: str, target_language: str
    ) -> Result[LearningScope, AppError]:
        source_language = (source_language or "").strip()
        target_language = (target_language or "").strip()
        if not source_language:
            return required_field("source_language", origin=ORIGIN)
        if not target_language:
            return required_field("target_language", origin=ORIGIN)
        if source_language == target_language:
            return validation_error(
                "Source and target language must differ", field="target_language", origin=ORIGIN
            )
        created = await self.store.create_scope(user_id, source_language, target_language, self.clock.now())
        return await self._finish(created)

    async def activate_scope(self, user_id: UUID, scope_id: UUID) -> Result[LearningScope, AppError]:
        return await self._finish(await self.store.activate_scope(user_id, scope_id))

    async def get_active_scope(self, user_id: UUID) -> Result[LearningScope, AppError]:
        return await self.store.get_active_scope(user_id)

    async def resolve_scope(self, user_id: UUID, scope_id: UUID | None = None) -> Result[LearningScope, AppError]:
        """The named scope if the user owns it, else the user's active scope."""
        if scope_id is None:
            return await self.store.get_active_scope(user_id)
        found = await self.store.get_scope(scope_id)
        if found.is_ok() and found.unwrap().user_id != user_id:
            # Other users' scopes are indistinguishable from missing ones
            return not_found("LearningScope", scope_id, origin=ORIGIN)
        return found


def progress_for(stats: UserStats) -> Progress:
    level = gamification.level_for(stats.xp)
    return Progress(
        level=level,
        xp=stats.xp,
        xp_in_level=gamification.progress_within_level(stats.xp),
        xp_for_next_level=gamification.xp_for_next_level(level),
        streak=stats.streak,
        daily_goal=stats.daily_goal,
        today_reviewed=stats.today_reviewed,
        today_correct=stats.today_correct,
        daily_goal_percent=streak.daily_goal_progress(stats),
        today_accuracy=streak.accuracy(stats.today_correct, stats.today_reviewed),
        overall_accuracy=streak.accuracy(stats.total_correct, stats.total_reviewed),
        total_words=stats.total_words,
        learned_words=stats.learned_words,
    )


def _check_fields(fields: ItemFields) -> Result[ItemFields, AppError]:
    if not fields.source_text.strip():
        return required_field("source_text", origin=ORIGIN)
    if not fields.target_text.strip():
        return required_field("target_text", origin=ORIGIN)
    return Ok(fields)
