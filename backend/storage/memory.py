"""In-Memory Record Store

``MemoryDatabase`` holds committed state for the whole process; each
``MemoryRecordStore`` is one unit of work over it. Writes are staged in the
store and become visible to other units only on ``commit``, which first
re-checks every optimistic condition against the committed state. Commit
never awaits, so under asyncio it applies atomically.
"""
from dataclasses import replace
from datetime import date, datetime
from uuid import UUID, uuid4

from core.errors import (
    AppError,
    Ok,
    Result,
    duplicate_key,
    not_found,
    receipt_conflict,
    version_conflict,
)
from core.logging import db_logger
from engines import gamification
from engines.types import (
    SCHEDULING_FIELDS,
    DailyStat,
    ImportResult,
    ItemFields,
    LearnableItem,
    LearningScope,
    ReviewReceipt,
    UserStats,
)
from storage.base import RecordStore

log = db_logger()

ORIGIN = "store.memory"


class MemoryDatabase:
    """Committed state shared by every MemoryRecordStore created from it."""

    def __init__(self):
        self.scopes: dict[UUID, LearningScope] = {}
        self.items: dict[UUID, LearnableItem] = {}
        self.stats: dict[UUID, UserStats] = {}
        self.daily: dict[tuple[UUID, date], DailyStat] = {}
        self.receipts: dict[tuple[UUID, str], ReviewReceipt] = {}
        self.commits = 0

    def session(self) -> "MemoryRecordStore":
        return MemoryRecordStore(self)


def new_item(scope_id: UUID, fields: ItemFields, now: datetime) -> LearnableItem:
    return LearnableItem(
        id=uuid4(),
        scope_id=scope_id,
        source_text=fields.source_text,
        target_text=fields.target_text,
        source_language=fields.source_language,
        target_language=fields.target_language,
        example_sentences=tuple(fields.example_sentences),
        category_id=fields.category_id,
        mnemonic=fields.mnemonic,
        box=1,
        next_review_at=now,
        created_at=now,
    )


class MemoryRecordStore(RecordStore):

    def __init__(self, db: MemoryDatabase):
        self._db = db
        self._reset()

    def _reset(self) -> None:
        self._scopes: dict[UUID, LearningScope] = {}
        self._items: dict[UUID, LearnableItem | None] = {}  # None marks a deletion
        # Column changes to committed items, merged onto the row current at commit
        self._patches: dict[UUID, dict] = {}
        self._stats: dict[UUID, UserStats] = {}
        self._daily: dict[tuple[UUID, date], tuple[int, int, int]] = {}
        self._receipts: dict[tuple[UUID, str], ReviewReceipt] = {}
        # Committed values the staged writes were based on
        self._stats_base: dict[UUID, int | None] = {}
        self._item_base: dict[UUID, int] = {}
        self._new_texts: set[tuple[UUID, str]] = set()

    # -- visibility helpers ---------------------------------------------------

    def _visible_scopes(self, user_id: UUID) -> list[LearningScope]:
        merged = {s.id: s for s in self._db.scopes.values() if s.user_id == user_id}
        merged.update({s.id: s for s in self._scopes.values() if s.user_id == user_id})
        return sorted(merged.values(), key=lambda s: s.created_at)

    def _visible_item(self, item_id: UUID) -> LearnableItem | None:
        if item_id in self._items:
            return self._items[item_id]
        return self._patched(self._db.items.get(item_id))

    def _patched(self, item: LearnableItem | None) -> LearnableItem | None:
        if item is None or item.id not in self._patches:
            return item
        return replace(item, **self._patches[item.id])

    def _patch(self, item_id: UUID, changes: dict) -> LearnableItem:
        if item_id in self._items:
            self._items[item_id] = replace(self._items[item_id], **changes)
        else:
            self._patches.setdefault(item_id, {}).update(changes)
        return self._visible_item(item_id)

    def _visible_items(self, scope_id: UUID) -> list[LearnableItem]:
        merged = {i.id: self._patched(i) for i in self._db.items.values() if i.scope_id == scope_id}
        for item_id, item in self._items.items():
            if item is None:
                merged.pop(item_id, None)
            elif item.scope_id == scope_id:
                merged[item_id] = item
        return sorted(merged.values(), key=lambda i: i.created_at, reverse=True)

    def _visible_stats(self, scope_id: UUID) -> UserStats | None:
        return self._stats.get(scope_id) or self._db.stats.get(scope_id)

    def _visible_daily(self, key: tuple[UUID, date]) -> DailyStat | None:
        row = self._db.daily.get(key)
        delta = self._daily.get(key)
        if delta is None:
            return row
        row = row or DailyStat(scope_id=key[0], date=key[1])
        return _accumulate(row, *delta)

    # -- scopes ---------------------------------------------------------------

    async def get_scope(self, scope_id: UUID) -> Result[LearningScope, AppError]:
        scope = self._scopes.get(scope_id) or self._db.scopes.get(scope_id)
        if scope is None:
            return not_found("LearningScope", scope_id, origin=ORIGIN)
        return Ok(scope)

    async def list_scopes(self, user_id: UUID) -> Result[list[LearningScope], AppError]:
        return Ok(self._visible_scopes(user_id))

    async def create_scope(
        self, user_id: UUID, source_language: str, target_language: str, now: datetime
    ) -> Result[LearningScope, AppError]:
        existing = self._visible_scopes(user_id)
        pair = f"{source_language}->{target_language}"
        if any((s.source_language, s.target_language) == (source_language, target_language) for s in existing):
            return duplicate_key("LearningScope", "language_pair", pair, origin=ORIGIN)
        scope = LearningScope(
            id=uuid4(),
            user_id=user_id,
            source_language=source_language,
            target_language=target_language,
            is_active=not existing,
            created_at=now,
        )
        self._scopes[scope.id] = scope
        return Ok(scope)

    async def activate_scope(self, user_id: UUID, scope_id: UUID) -> Result[LearningScope, AppError]:
        scopes = self._visible_scopes(user_id)
        if not any(s.id == scope_id for s in scopes):
            return not_found("LearningScope", scope_id, origin=ORIGIN)
        activated = None
        for scope in scopes:
            updated = replace(scope, is_active=scope.id == scope_id)
            if updated != scope:
                self._scopes[scope.id] = updated
            if scope.id == scope_id:
                activated = updated
        return Ok(activated)

    async def get_active_scope(self, user_id: UUID) -> Result[LearningScope, AppError]:
        for scope in self._visible_scopes(user_id):
            if scope.is_active:
                return Ok(scope)
        return not_found("Active LearningScope", user_id, origin=ORIGIN)

    # -- items ----------------------------------------------------------------

    async def get_item(self, scope_id: UUID, item_id: UUID) -> Result[LearnableItem, AppError]:
        item = self._visible_item(item_id)
        if item is None or item.scope_id != scope_id:
            return not_found("LearnableItem", item_id, origin=ORIGIN)
        return Ok(item)

    async def list_items(self, scope_id: UUID) -> Result[list[LearnableItem], AppError]:
        return Ok(self._visible_items(scope_id))

    async def find_item_by_source_text(
        self, scope_id: UUID, source_text: str
    ) -> Result[LearnableItem | None, AppError]:
        for item in self._visible_items(scope_id):
            if item.source_text == source_text:
                return Ok(item)
        return Ok(None)

    async def insert_item(
        self, scope_id: UUID, fields: ItemFields, now: datetime
    ) -> Result[LearnableItem, AppError]:
        existing = await self.find_item_by_source_text(scope_id, fields.source_text)
        if existing.unwrap() is not None:
            return duplicate_key("LearnableItem", "source_text", fields.source_text, origin=ORIGIN)
        item = new_item(scope_id, fields, now)
        self._items[item.id] = item
        self._new_texts.add((scope_id, item.source_text))
        return Ok(item)

    async def insert_items_bulk(
        self, scope_id: UUID, fields: list[ItemFields], now: datetime
    ) -> Result[ImportResult, AppError]:
        seen = {i.source_text for i in self._visible_items(scope_id)}
        result = ImportResult()
        for entry in fields:
            if entry.source_text in seen:
                result.duplicates.append(entry)
                continue
            seen.add(entry.source_text)
            item = new_item(scope_id, entry, now)
            self._items[item.id] = item
            self._new_texts.add((scope_id, item.source_text))
            result.added.append(item)
        log.debug("bulk_staged", scope_id=str(scope_id), added=len(result.added), duplicates=len(result.duplicates))
        return Ok(result)

    async def update_item(
        self, item: LearnableItem, expected_times_reviewed: int | None = None
    ) -> Result[LearnableItem, AppError]:
        current = self._visible_item(item.id)
        if current is None or current.scope_id != item.scope_id:
            return not_found("LearnableItem", item.id, origin=ORIGIN)
        if expected_times_reviewed is not None:
            if current.times_reviewed != expected_times_reviewed:
                return version_conflict(
                    "LearnableItem", expected_times_reviewed, current.times_reviewed, origin=ORIGIN
                )
            committed = self._db.items.get(item.id)
            if item.id not in self._item_base and committed is not None:
                self._item_base[item.id] = committed.times_reviewed
        return Ok(self._patch(item.id, {name: getattr(item, name) for name in SCHEDULING_FIELDS}))

    async def update_item_content(
        self, scope_id: UUID, item_id: UUID, changes: dict
    ) -> Result[LearnableItem, AppError]:
        current = self._visible_item(item_id)
        if current is None or current.scope_id != scope_id:
            return not_found("LearnableItem", item_id, origin=ORIGIN)
        text = changes.get("source_text", current.source_text)
        if text != current.source_text:
            clash = await self.find_item_by_source_text(scope_id, text)
            if clash.unwrap() is not None:
                return duplicate_key("LearnableItem", "source_text", text, origin=ORIGIN)
            self._new_texts.add((scope_id, text))
        return Ok(self._patch(item_id, dict(changes)))

    async def delete_item(self, scope_id: UUID, item_id: UUID) -> Result[None, AppError]:
        current = self._visible_item(item_id)
        if current is None or current.scope_id != scope_id:
            return not_found("LearnableItem", item_id, origin=ORIGIN)
        self._items[item_id] = None
        return Ok(None)

    # -- stats ----------------------------------------------------------------

    async def get_stats(self, scope_id: UUID) -> Result[UserStats | None, AppError]:
        return Ok(self._visible_stats(scope_id))

    async def insert_stats(self, stats: UserStats) -> Result[UserStats, AppError]:
        existing = self._visible_stats(stats.scope_id)
        if existing is not None:
            return version_conflict("UserStats", "absent", existing.version, origin=ORIGIN)
        self._stats_base.setdefault(stats.scope_id, None)
        stored = replace(stats, level=gamification.level_for(stats.xp))
        self._stats[stats.scope_id] = stored
        return Ok(stored)

    async def save_stats(self, stats: UserStats, expected_version: int) -> Result[UserStats, AppError]:
        current = self._visible_stats(stats.scope_id)
        if current is None:
            return not_found("UserStats", stats.scope_id, origin=ORIGIN)
        if current.version != expected_version:
            return version_conflict("UserStats", expected_version, current.version, origin=ORIGIN)
        if stats.scope_id not in self._stats_base:
            committed = self._db.stats.get(stats.scope_id)
            self._stats_base[stats.scope_id] = committed.version if committed else None
        saved = replace(stats, version=expected_version + 1, level=gamification.level_for(stats.xp))
        self._stats[stats.scope_id] = saved
        return Ok(saved)

    async def append_daily_stat(
        self,
        scope_id: UUID,
        day: date,
        words_reviewed: int = 0,
        words_correct: int = 0,
        xp_earned: int = 0,
    ) -> Result[DailyStat, AppError]:
        key = (scope_id, day)
        reviewed, correct, xp = self._daily.get(key, (0, 0, 0))
        self._daily[key] = (reviewed + words_reviewed, correct + words_correct, xp + xp_earned)
        return Ok(self._visible_daily(key))

    async def list_daily_stats(
        self, scope_id: UUID, since: date | None = None
    ) -> Result[list[DailyStat], AppError]:
        keys = {k for k in self._db.daily if k[0] == scope_id}
        keys.update(k for k in self._daily if k[0] == scope_id)
        rows = [self._visible_daily(k) for k in keys if since is None or k[1] >= since]
        return Ok(sorted(rows, key=lambda d: d.date))

    # -- idempotency ----------------------------------------------------------

    async def get_receipt(self, scope_id: UUID, key: str) -> Result[ReviewReceipt | None, AppError]:
        return Ok(self._receipts.get((scope_id, key)) or self._db.receipts.get((scope_id, key)))

    async def insert_receipt(self, receipt: ReviewReceipt) -> Result[ReviewReceipt, AppError]:
        key = (receipt.scope_id, receipt.idempotency_key)
        if key in self._receipts or key in self._db.receipts:
            return receipt_conflict(receipt.idempotency_key, origin=ORIGIN)
        self._receipts[key] = receipt
        return Ok(receipt)

    # -- unit of work ---------------------------------------------------------

    def _commit_conflict(self) -> Result[None, AppError] | None:
        db = self._db
        for scope_id, base in self._stats_base.items():
            committed = db.stats.get(scope_id)
            actual = committed.version if committed else None
            if actual != base:
                return version_conflict("UserStats", base if base is not None else "absent", actual, origin=ORIGIN)
        for item_id, base in self._item_base.items():
            committed = db.items.get(item_id)
            actual = committed.times_reviewed if committed else None
            if actual != base:
                return version_conflict("LearnableItem", base, actual, origin=ORIGIN)
        for item_id in self._patches:
            if item_id not in self._items and item_id not in db.items:
                return not_found("LearnableItem", item_id, origin=ORIGIN)
        for scope_id, text in self._new_texts:
            if any(
                i.scope_id == scope_id and i.source_text == text and i.id not in self._items
                for i in db.items.values()
            ):
                return duplicate_key("LearnableItem", "source_text", text, origin=ORIGIN)
        for scope_id, key in self._receipts:
            if (scope_id, key) in db.receipts:
                return receipt_conflict(key, origin=ORIGIN)
        return None

    async def commit(self) -> Result[None, AppError]:
        conflict = self._commit_conflict()
        if conflict is not None:
            log.warning("commit_rejected", code=conflict.unwrap_err().code.name)
            self._reset()
            return conflict

        db = self._db
        db.scopes.update(self._scopes)
        for item_id, item in self._items.items():
            if item is None:
                db.items.pop(item_id, None)
            else:
                db.items[item_id] = item
        for item_id, changes in self._patches.items():
            if item_id not in self._items:
                db.items[item_id] = replace(db.items[item_id], **changes)
        db.stats.update(self._stats)
        for key, delta in self._daily.items():
            row = db.daily.get(key) or DailyStat(scope_id=key[0], date=key[1])
            db.daily[key] = _accumulate(row, *delta)
        db.receipts.update(self._receipts)
        db.commits += 1
        self._reset()
        return Ok(None)

    async def rollback(self) -> None:
        self._reset()


def _accumulate(row: DailyStat, reviewed: int, correct: int, xp: int) -> DailyStat:
    return replace(
        row,
        words_reviewed=row.words_reviewed + reviewed,
        words_correct=row.words_correct + correct,
        xp_earned=row.xp_earned + xp,
    )
