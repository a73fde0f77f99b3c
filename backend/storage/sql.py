"""SQL Record Store

RecordStore over one SQLAlchemy AsyncSession. The session is the unit of
work: writes are flushed as they happen and made durable by ``commit``.
Conditional writes are single UPDATE statements guarded on the version
column, so a stale writer matches zero rows and gets a ConflictError.
"""
from dataclasses import replace
from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import models as orm
from core.errors import (
    AppError,
    DatabaseErrorMapper,
    Err,
    Ok,
    Result,
    duplicate_key,
    map_db_errors,
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

# Rows loaded earlier in the session must not mask a guarded UPDATE
FRESH = {"populate_existing": True}
NO_SYNC = {"synchronize_session": False}

# INSERT ... ON CONFLICT DO NOTHING, per dialect
INSERT_IGNORE = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _scope(row: orm.LearningScope) -> LearningScope:
    return LearningScope(
        id=row.id,
        user_id=row.user_id,
        source_language=row.source_language,
        target_language=row.target_language,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _item(row: orm.Word) -> LearnableItem:
    return LearnableItem(
        id=row.id,
        scope_id=row.scope_id,
        source_text=row.source_text,
        target_text=row.target_text,
        source_language=row.source_language,
        target_language=row.target_language,
        example_sentences=tuple(row.example_sentences or ()),
        category_id=row.category_id,
        mnemonic=row.mnemonic,
        box=row.box,
        next_review_at=row.next_review_at,
        created_at=row.created_at,
        times_reviewed=row.times_reviewed,
        times_correct=row.times_correct,
        times_incorrect=row.times_incorrect,
        last_reviewed_at=row.last_reviewed_at,
    )


def _stats(row: orm.UserStats) -> UserStats:
    return UserStats(
        scope_id=row.scope_id,
        last_active_date=row.last_active_date,
        total_words=row.total_words,
        learned_words=row.learned_words,
        streak=row.streak,
        today_reviewed=row.today_reviewed,
        today_correct=row.today_correct,
        total_reviewed=row.total_reviewed,
        total_correct=row.total_correct,
        xp=row.xp,
        level=gamification.level_for(row.xp),
        achievements=tuple(row.achievements or ()),
        daily_goal=row.daily_goal,
        version=row.version,
    )


def _daily(row: orm.DailyStat) -> DailyStat:
    return DailyStat(
        scope_id=row.scope_id,
        date=row.date,
        words_reviewed=row.words_reviewed,
        words_correct=row.words_correct,
        xp_earned=row.xp_earned,
    )


def _receipt(row: orm.ReviewReceipt) -> ReviewReceipt:
    return ReviewReceipt(
        scope_id=row.scope_id,
        idempotency_key=row.idempotency_key,
        item_id=row.item_id,
        is_correct=row.is_correct,
        created_at=row.created_at,
    )


def _word_values(scope_id: UUID, fields: ItemFields, now: datetime) -> dict:
    return dict(
        id=uuid4(),
        scope_id=scope_id,
        source_text=fields.source_text,
        target_text=fields.target_text,
        source_language=fields.source_language,
        target_language=fields.target_language,
        example_sentences=list(fields.example_sentences),
        category_id=fields.category_id,
        mnemonic=fields.mnemonic,
        box=1,
        next_review_at=now,
        times_reviewed=0,
        times_correct=0,
        times_incorrect=0,
        last_reviewed_at=None,
        created_at=now,
    )


def _word_row(scope_id: UUID, fields: ItemFields, now: datetime) -> orm.Word:
    return orm.Word(**_word_values(scope_id, fields, now))


def _stats_values(stats: UserStats) -> dict:
    return dict(
        total_words=stats.total_words,
        learned_words=stats.learned_words,
        streak=stats.streak,
        today_reviewed=stats.today_reviewed,
        today_correct=stats.today_correct,
        total_reviewed=stats.total_reviewed,
        total_correct=stats.total_correct,
        last_active_date=stats.last_active_date,
        xp=stats.xp,
        level=gamification.level_for(stats.xp),
        achievements=list(stats.achievements),
        daily_goal=stats.daily_goal,
    )


class SqlRecordStore(RecordStore):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _user_scopes(self, user_id: UUID) -> list[orm.LearningScope]:
        rows = await self._session.execute(
            select(orm.LearningScope)
            .where(orm.LearningScope.user_id == user_id)
            .order_by(orm.LearningScope.created_at)
            .execution_options(**FRESH)
        )
        return list(rows.scalars())

    # -- scopes ---------------------------------------------------------------

    @map_db_errors("store.sql.scopes")
    async def get_scope(self, scope_id: UUID) -> Result[LearningScope, AppError]:
        row = await self._session.get(orm.LearningScope, scope_id, populate_existing=True)
        if row is None:
            return not_found("LearningScope", scope_id)
        return Ok(_scope(row))

    @map_db_errors("store.sql.scopes")
    async def list_scopes(self, user_id: UUID) -> Result[list[LearningScope], AppError]:
        return Ok([_scope(r) for r in await self._user_scopes(user_id)])

    @map_db_errors("store.sql.scopes")
    async def create_scope(
        self, user_id: UUID, source_language: str, target_language: str, now: datetime
    ) -> Result[LearningScope, AppError]:
        existing = await self._user_scopes(user_id)
        if any((s.source_language, s.target_language) == (source_language, target_language) for s in existing):
            return duplicate_key("LearningScope", "language_pair", f"{source_language}->{target_language}")
        row = orm.LearningScope(
            user_id=user_id,
            source_language=source_language,
            target_language=target_language,
            is_active=not existing,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return Ok(_scope(row))

    @map_db_errors("store.sql.scopes")
    async def activate_scope(self, user_id: UUID, scope_id: UUID) -> Result[LearningScope, AppError]:
        rows = await self._user_scopes(user_id)
        target = next((r for r in rows if r.id == scope_id), None)
        if target is None:
            return not_found("LearningScope", scope_id)
        for row in rows:
            row.is_active = row.id == scope_id
        await self._session.flush()
        return Ok(_scope(target))

    @map_db_errors("store.sql.scopes")
    async def get_active_scope(self, user_id: UUID) -> Result[LearningScope, AppError]:
        for row in await self._user_scopes(user_id):
            if row.is_active:
                return Ok(_scope(row))
        return not_found("Active LearningScope", user_id)

    # -- items ----------------------------------------------------------------

    @map_db_errors("store.sql.items")
    async def get_item(self, scope_id: UUID, item_id: UUID) -> Result[LearnableItem, AppError]:
        row = await self._session.scalar(
            select(orm.Word)
            .where(orm.Word.id == item_id, orm.Word.scope_id == scope_id)
            .execution_options(**FRESH)
        )
        if row is None:
            return not_found("LearnableItem", item_id)
        return Ok(_item(row))

    @map_db_errors("store.sql.items")
    async def list_items(self, scope_id: UUID) -> Result[list[LearnableItem], AppError]:
        rows = await self._session.scalars(
            select(orm.Word)
            .where(orm.Word.scope_id == scope_id)
            .order_by(orm.Word.created_at.desc())
            .execution_options(**FRESH)
        )
        return Ok([_item(r) for r in rows])

    @map_db_errors("store.sql.items")
    async def find_item_by_source_text(
        self, scope_id: UUID, source_text: str
    ) -> Result[LearnableItem | None, AppError]:
        row = await self._session.scalar(
            select(orm.Word)
            .where(orm.Word.scope_id == scope_id, orm.Word.source_text == source_text)
            .execution_options(**FRESH)
        )
        return Ok(_item(row) if row is not None else None)

    @map_db_errors("store.sql.items")
    async def insert_item(
        self, scope_id: UUID, fields: ItemFields, now: datetime
    ) -> Result[LearnableItem, AppError]:
        existing = await self.find_item_by_source_text(scope_id, fields.source_text)
        if existing.is_err():
            return existing
        if existing.unwrap() is not None:
            return duplicate_key("LearnableItem", "source_text", fields.source_text)
        row = _word_row(scope_id, fields, now)
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same text
            return duplicate_key("LearnableItem", "source_text", fields.source_text)
        return Ok(_item(row))

    @map_db_errors("store.sql.items")
    async def insert_items_bulk(
        self, scope_id: UUID, fields: list[ItemFields], now: datetime
    ) -> Result[ImportResult, AppError]:
        # The unique constraint decides, so texts committed by a concurrent
        # unit after this one started are reported as duplicates too
        insert = INSERT_IGNORE[self._session.get_bind().dialect.name]
        result = ImportResult()
        batch: set[str] = set()
        for entry in fields:
            if entry.source_text in batch:
                result.duplicates.append(entry)
                continue
            batch.add(entry.source_text)
            values = _word_values(scope_id, entry, now)
            inserted = await self._session.execute(
                insert(orm.Word)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["scope_id", "source_text"])
            )
            if inserted.rowcount == 0:
                result.duplicates.append(entry)
            else:
                result.added.append(_item(orm.Word(**values)))
        return Ok(result)

    @map_db_errors("store.sql.items")
    async def update_item(
        self, item: LearnableItem, expected_times_reviewed: int | None = None
    ) -> Result[LearnableItem, AppError]:
        stmt = update(orm.Word).where(orm.Word.id == item.id, orm.Word.scope_id == item.scope_id)
        if expected_times_reviewed is not None:
            stmt = stmt.where(orm.Word.times_reviewed == expected_times_reviewed)
        stmt = stmt.values(
            {name: getattr(item, name) for name in SCHEDULING_FIELDS}
        ).execution_options(**NO_SYNC)
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            current = await self.get_item(item.scope_id, item.id)
            if current.is_err():
                return current
            return version_conflict(
                "LearnableItem", expected_times_reviewed, current.unwrap().times_reviewed
            )
        return await self.get_item(item.scope_id, item.id)

    @map_db_errors("store.sql.items")
    async def update_item_content(
        self, scope_id: UUID, item_id: UUID, changes: dict
    ) -> Result[LearnableItem, AppError]:
        values = dict(changes)
        if "example_sentences" in values:
            values["example_sentences"] = list(values["example_sentences"])
        if values:
            stmt = (
                update(orm.Word)
                .where(orm.Word.id == item_id, orm.Word.scope_id == scope_id)
                .values(**values)
                .execution_options(**NO_SYNC)
            )
            try:
                result = await self._session.execute(stmt)
            except IntegrityError:
                return duplicate_key("LearnableItem", "source_text", values.get("source_text"))
            if result.rowcount == 0:
                return not_found("LearnableItem", item_id)
        return await self.get_item(scope_id, item_id)

    @map_db_errors("store.sql.items")
    async def delete_item(self, scope_id: UUID, item_id: UUID) -> Result[None, AppError]:
        result = await self._session.execute(
            delete(orm.Word)
            .where(orm.Word.id == item_id, orm.Word.scope_id == scope_id)
            .execution_options(**NO_SYNC)
        )
        if result.rowcount == 0:
            return not_found("LearnableItem", item_id)
        return Ok(None)

    # -- stats ----------------------------------------------------------------

    @map_db_errors("store.sql.stats")
    async def get_stats(self, scope_id: UUID) -> Result[UserStats | None, AppError]:
        row = await self._session.get(orm.UserStats, scope_id, populate_existing=True)
        return Ok(_stats(row) if row is not None else None)

    @map_db_errors("store.sql.stats")
    async def insert_stats(self, stats: UserStats) -> Result[UserStats, AppError]:
        self._session.add(orm.UserStats(scope_id=stats.scope_id, version=stats.version, **_stats_values(stats)))
        try:
            await self._session.flush()
        except IntegrityError:
            # Another unit of work created the row first
            return version_conflict("UserStats", "absent", "present")
        return Ok(replace(stats, level=gamification.level_for(stats.xp)))

    @map_db_errors("store.sql.stats")
    async def save_stats(self, stats: UserStats, expected_version: int) -> Result[UserStats, AppError]:
        result = await self._session.execute(
            update(orm.UserStats)
            .where(orm.UserStats.scope_id == stats.scope_id, orm.UserStats.version == expected_version)
            .values(version=expected_version + 1, **_stats_values(stats))
            .execution_options(**NO_SYNC)
        )
        if result.rowcount == 0:
            current = await self.get_stats(stats.scope_id)
            if current.is_err():
                return current
            if current.unwrap() is None:
                return not_found("UserStats", stats.scope_id)
            return version_conflict("UserStats", expected_version, current.unwrap().version)
        return Ok(replace(stats, version=expected_version + 1, level=gamification.level_for(stats.xp)))

    @map_db_errors("store.sql.daily")
    async def append_daily_stat(
        self,
        scope_id: UUID,
        day: date,
        words_reviewed: int = 0,
        words_correct: int = 0,
        xp_earned: int = 0,
    ) -> Result[DailyStat, AppError]:
        table = orm.DailyStat
        result = await self._session.execute(
            update(table)
            .where(table.scope_id == scope_id, table.date == day)
            .values(
                words_reviewed=table.words_reviewed + words_reviewed,
                words_correct=table.words_correct + words_correct,
                xp_earned=table.xp_earned + xp_earned,
            )
            .execution_options(**NO_SYNC)
        )
        if result.rowcount == 0:
            self._session.add(table(
                scope_id=scope_id,
                date=day,
                words_reviewed=words_reviewed,
                words_correct=words_correct,
                xp_earned=xp_earned,
            ))
            await self._session.flush()
        row = await self._session.scalar(
            select(table).where(table.scope_id == scope_id, table.date == day).execution_options(**FRESH)
        )
        return Ok(_daily(row))

    @map_db_errors("store.sql.daily")
    async def list_daily_stats(
        self, scope_id: UUID, since: date | None = None
    ) -> Result[list[DailyStat], AppError]:
        stmt = select(orm.DailyStat).where(orm.DailyStat.scope_id == scope_id)
        if since is not None:
            stmt = stmt.where(orm.DailyStat.date >= since)
        rows = await self._session.scalars(stmt.order_by(orm.DailyStat.date).execution_options(**FRESH))
        return Ok([_daily(r) for r in rows])

    # -- idempotency ----------------------------------------------------------

    @map_db_errors("store.sql.receipts")
    async def get_receipt(self, scope_id: UUID, key: str) -> Result[ReviewReceipt | None, AppError]:
        row = await self._session.scalar(
            select(orm.ReviewReceipt).where(
                orm.ReviewReceipt.scope_id == scope_id,
                orm.ReviewReceipt.idempotency_key == key,
            )
        )
        return Ok(_receipt(row) if row is not None else None)

    @map_db_errors("store.sql.receipts")
    async def insert_receipt(self, receipt: ReviewReceipt) -> Result[ReviewReceipt, AppError]:
        self._session.add(orm.ReviewReceipt(
            scope_id=receipt.scope_id,
            idempotency_key=receipt.idempotency_key,
            item_id=receipt.item_id,
            is_correct=receipt.is_correct,
            created_at=receipt.created_at,
        ))
        try:
            await self._session.flush()
        except IntegrityError:
            return receipt_conflict(receipt.idempotency_key)
        return Ok(receipt)

    # -- unit of work ---------------------------------------------------------

    async def commit(self) -> Result[None, AppError]:
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            log.error("commit_failed", error=str(e))
            return Err(DatabaseErrorMapper("store.sql.commit").map_exception(e))
        return Ok(None)

    async def rollback(self) -> None:
        await self._session.rollback()
