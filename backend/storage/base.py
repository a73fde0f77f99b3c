"""Record Store Interface

The scheduler only talks to storage through this interface, so the same
business rules run on top of any backend. Every method returns a Result;
writes are staged until ``commit`` and discarded by ``rollback``, giving the
caller one unit of work per operation.

Duplicate policy: within one scope, ``source_text`` is unique under exact,
case-sensitive comparison. ``insert_item`` rejects a duplicate with
DuplicateError; ``insert_items_bulk`` skips and reports duplicates, including
repeats inside the same batch.

Concurrency: ``save_stats`` is conditional on the caller's ``expected_version``
and ``update_item`` optionally on ``expected_times_reviewed``. A mismatch, at
write time or at commit, yields ConflictError. Item writes touch disjoint
columns: ``update_item`` writes the scheduling state only and
``update_item_content`` the editable content only, so a content edit and a
review of the same item never overwrite each other.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from uuid import UUID

from core.errors import AppError, Result
from engines.types import (
    DailyStat,
    ImportResult,
    ItemFields,
    LearnableItem,
    LearningScope,
    ReviewReceipt,
    UserStats,
)


class RecordStore(ABC):

    # -- scopes ---------------------------------------------------------------

    @abstractmethod
    async def get_scope(self, scope_id: UUID) -> Result[LearningScope, AppError]: ...

    @abstractmethod
    async def list_scopes(self, user_id: UUID) -> Result[list[LearningScope], AppError]: ...

    @abstractmethod
    async def create_scope(
        self, user_id: UUID, source_language: str, target_language: str, now: datetime
    ) -> Result[LearningScope, AppError]:
        """Create a scope; a user's first scope becomes the active one."""

    @abstractmethod
    async def activate_scope(self, user_id: UUID, scope_id: UUID) -> Result[LearningScope, AppError]:
        """Make ``scope_id`` the user's only active scope."""

    @abstractmethod
    async def get_active_scope(self, user_id: UUID) -> Result[LearningScope, AppError]: ...

    # -- items ----------------------------------------------------------------

    @abstractmethod
    async def get_item(self, scope_id: UUID, item_id: UUID) -> Result[LearnableItem, AppError]:
        """NotFound when the item is missing or belongs to another scope."""

    @abstractmethod
    async def list_items(self, scope_id: UUID) -> Result[list[LearnableItem], AppError]:
        """All items of the scope, newest first."""

    @abstractmethod
    async def find_item_by_source_text(
        self, scope_id: UUID, source_text: str
    ) -> Result[LearnableItem | None, AppError]: ...

    @abstractmethod
    async def insert_item(
        self, scope_id: UUID, fields: ItemFields, now: datetime
    ) -> Result[LearnableItem, AppError]:
        """New item in box 1, due immediately."""

    @abstractmethod
    async def insert_items_bulk(
        self, scope_id: UUID, fields: list[ItemFields], now: datetime
    ) -> Result[ImportResult, AppError]: ...

    @abstractmethod
    async def update_item(
        self, item: LearnableItem, expected_times_reviewed: int | None = None
    ) -> Result[LearnableItem, AppError]:
        """Write the scheduling fields of ``item``; content is left as stored."""

    @abstractmethod
    async def update_item_content(
        self, scope_id: UUID, item_id: UUID, changes: dict
    ) -> Result[LearnableItem, AppError]:
        """Write content fields only and return the item as now stored."""

    @abstractmethod
    async def delete_item(self, scope_id: UUID, item_id: UUID) -> Result[None, AppError]: ...

    # -- stats ----------------------------------------------------------------

    @abstractmethod
    async def get_stats(self, scope_id: UUID) -> Result[UserStats | None, AppError]: ...

    @abstractmethod
    async def insert_stats(self, stats: UserStats) -> Result[UserStats, AppError]: ...

    @abstractmethod
    async def save_stats(self, stats: UserStats, expected_version: int) -> Result[UserStats, AppError]:
        """Write stats if the stored version still equals ``expected_version``.

        The returned record carries ``expected_version + 1``.
        """

    @abstractmethod
    async def append_daily_stat(
        self,
        scope_id: UUID,
        day: date,
        words_reviewed: int = 0,
        words_correct: int = 0,
        xp_earned: int = 0,
    ) -> Result[DailyStat, AppError]:
        """Add the deltas to the row for ``day``, creating it when absent."""

    @abstractmethod
    async def list_daily_stats(
        self, scope_id: UUID, since: date | None = None
    ) -> Result[list[DailyStat], AppError]:
        """Rows on or after ``since``, oldest first."""

    # -- idempotency ----------------------------------------------------------

    @abstractmethod
    async def get_receipt(self, scope_id: UUID, key: str) -> Result[ReviewReceipt | None, AppError]: ...

    @abstractmethod
    async def insert_receipt(self, receipt: ReviewReceipt) -> Result[ReviewReceipt, AppError]: ...

    # -- unit of work ---------------------------------------------------------

    @abstractmethod
    async def commit(self) -> Result[None, AppError]: ...

    @abstractmethod
    async def rollback(self) -> None: ...
