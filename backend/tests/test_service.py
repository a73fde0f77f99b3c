from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from core.clock import FixedClock
from core.errors import ErrorCode, Err, transaction_failed
from core.resilience import RetryConfig, RetryPolicy
from core.security import SINGLE_USER_ID
from engines.service import LeitnerService
from storage.memory import MemoryRecordStore
from conftest import T0, word


async def add(service, scope, text, **kwargs):
    return (await service.add_item(scope.id, word(text, **kwargs))).unwrap()


class TestAddItem:

    async def test_new_item_starts_in_first_box_due_now(self, service, scope):
        item = await add(service, scope, "cat", target_text="gato")

        assert item.box == 1
        assert item.next_review_at == T0
        assert item.times_reviewed == 0

    async def test_updates_stats_and_unlocks_first_word(self, service, scope):
        await add(service, scope, "cat")
        stats = (await service.get_stats(scope.id)).unwrap()

        assert stats.total_words == 1
        assert stats.xp == 5
        assert "first_word" in stats.achievements

    async def test_duplicate_source_text_rejected(self, service, scope, memory_db):
        await add(service, scope, "cat")
        result = await service.add_item(scope.id, word("cat", target_text="felino"))

        assert result.is_err()
        assert result.unwrap_err().code is ErrorCode.E4011_DUPLICATE_KEY
        assert len(memory_db.items) == 1
        assert (await service.get_stats(scope.id)).unwrap().total_words == 1

    async def test_duplicates_are_case_sensitive(self, service, scope):
        await add(service, scope, "Hola")
        result = await service.add_item(scope.id, word("hola"))
        assert result.is_ok()

    async def test_blank_text_rejected(self, service, scope):
        result = await service.add_item(scope.id, word("   "))
        assert result.unwrap_err().code is ErrorCode.E2001_REQUIRED_FIELD_MISSING

    async def test_unknown_scope(self, service):
        result = await service.add_item(uuid4(), word("cat"))
        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND


class TestBulkImport:

    async def test_skips_and_reports_existing_duplicates(self, service, scope, memory_db):
        await add(service, scope, "cat")
        before = len(memory_db.items)

        result = (await service.import_items_bulk(
            scope.id, [word("dog"), word("cat"), word("bird")]
        )).unwrap()

        assert [i.source_text for i in result.added] == ["dog", "bird"]
        assert [d.source_text for d in result.duplicates] == ["cat"]
        assert len(memory_db.items) == before + 2
        assert (await service.get_stats(scope.id)).unwrap().total_words == 3

    async def test_repeats_inside_one_batch(self, service, scope):
        result = (await service.import_items_bulk(
            scope.id, [word("sun"), word("sun", target_text="sol"), word("moon")]
        )).unwrap()

        assert len(result.added) == 2
        assert [d.target_text for d in result.duplicates] == ["sol"]

    async def test_empty_batch(self, service, scope):
        result = (await service.import_items_bulk(scope.id, [])).unwrap()
        assert result.added == [] and result.duplicates == []


class TestProcessReview:

    async def test_box_three_correct_moves_to_four(self, service, scope, clock):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)
        await service.process_review(scope.id, item.id, True)
        clock.advance(days=2)

        outcome = (await service.process_review(scope.id, item.id, True)).unwrap()

        assert outcome.item.box == 4
        assert outcome.item.next_review_at == clock.now() + timedelta(days=5)
        assert outcome.xp_awarded == 10

    async def test_wrong_answer_resets_and_counts(self, service, scope):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)

        outcome = (await service.process_review(scope.id, item.id, False)).unwrap()

        assert outcome.item.box == 1
        assert outcome.item.times_reviewed == 2
        assert outcome.item.times_incorrect == 1
        assert outcome.stats.today_reviewed == 2
        assert outcome.stats.today_correct == 1
        assert outcome.stats.xp == 5 + 10 + 2

    async def test_level_up_from_95_xp(self, service, scope, memory_db):
        item = await add(service, scope, "cat")
        memory_db.stats[scope.id] = replace(memory_db.stats[scope.id], xp=95)

        outcome = (await service.process_review(scope.id, item.id, True)).unwrap()

        assert outcome.stats.xp == 105
        assert outcome.stats.level == 2
        assert outcome.leveled_up

    async def test_learned_words_counts_correct_answers_by_default(self, service, scope):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)
        outcome = (await service.process_review(scope.id, item.id, True)).unwrap()

        assert outcome.stats.learned_words == 2

    async def test_top_box_policy_counts_reaching_box_five(self, store, clock, scope):
        service = LeitnerService(store, clock, learned_words_policy="top_box")
        item = await add(service, scope, "cat")

        for _ in range(3):
            outcome = (await service.process_review(scope.id, item.id, True)).unwrap()
        assert outcome.stats.learned_words == 0

        outcome = (await service.process_review(scope.id, item.id, True)).unwrap()
        assert outcome.item.box == 5
        assert outcome.stats.learned_words == 1

        outcome = (await service.process_review(scope.id, item.id, True)).unwrap()
        assert outcome.stats.learned_words == 1

    async def test_records_daily_activity(self, service, scope, memory_db, clock):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)
        await service.process_review(scope.id, item.id, False)

        daily = memory_db.daily[(scope.id, clock.today())]
        assert daily.words_reviewed == 2
        assert daily.words_correct == 1
        assert daily.xp_earned == 5 + 10 + 2

    async def test_unknown_item(self, service, scope):
        result = await service.process_review(scope.id, uuid4(), True)
        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND

    async def test_item_from_another_scope_is_not_found(self, service, scope):
        other = (await service.create_scope(SINGLE_USER_ID, "en", "fr")).unwrap()
        item = await add(service, other, "cat")

        result = await service.process_review(scope.id, item.id, True)
        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND


class FailingDailyStore(MemoryRecordStore):

    async def append_daily_stat(self, *args, **kwargs):
        return transaction_failed("disk full", origin="test")


class TestRollback:

    async def test_failed_step_leaves_item_and_stats_untouched(self, memory_db, store, clock, scope):
        service = LeitnerService(store, clock)
        item = await add(service, scope, "cat")
        stats_before = memory_db.stats[scope.id]

        failing = LeitnerService(FailingDailyStore(memory_db), clock)
        result = await failing.process_review(scope.id, item.id, True)

        assert result.unwrap_err().code is ErrorCode.E4003_TRANSACTION_FAILED
        assert memory_db.items[item.id] == item
        assert memory_db.stats[scope.id] == stats_before


class InterleavingStore(MemoryRecordStore):
    """Runs ``interleave`` once, right before the first commit."""

    def __init__(self, db, interleave):
        super().__init__(db)
        self.interleave = interleave

    async def commit(self):
        if self.interleave is not None:
            pending, self.interleave = self.interleave, None
            await pending()
        return await super().commit()


class TestConcurrency:

    async def _setup(self, memory_db, clock, scope):
        seed = LeitnerService(memory_db.session(), clock)
        item = await add(seed, scope, "cat")
        other = LeitnerService(memory_db.session(), clock)
        return item, other

    async def test_concurrent_review_conflicts(self, memory_db, clock, scope):
        item, other = await self._setup(memory_db, clock, scope)
        racing = LeitnerService(
            InterleavingStore(memory_db, lambda: other.process_review(scope.id, item.id, True)),
            clock,
        )

        result = await racing.process_review(scope.id, item.id, False)

        assert result.unwrap_err().code is ErrorCode.E5002_STATE_CONFLICT
        assert memory_db.items[item.id].times_reviewed == 1
        assert memory_db.items[item.id].box == 2
        assert memory_db.stats[scope.id].total_reviewed == 1

    async def test_retry_reapplies_on_fresh_state(self, memory_db, clock, scope):
        item, other = await self._setup(memory_db, clock, scope)
        racing = LeitnerService(
            InterleavingStore(memory_db, lambda: other.process_review(scope.id, item.id, True)),
            clock,
        )
        policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))

        outcome = await policy.execute(lambda: racing.process_review(scope.id, item.id, True))

        assert outcome.succeeded
        assert outcome.attempts == 2
        assert memory_db.items[item.id].times_reviewed == 2
        assert memory_db.items[item.id].box == 3
        assert memory_db.stats[scope.id].total_reviewed == 2

    async def test_edit_keeps_review_committed_meanwhile(self, memory_db, clock, scope):
        item, other = await self._setup(memory_db, clock, scope)
        editor = LeitnerService(
            InterleavingStore(memory_db, lambda: other.process_review(scope.id, item.id, True)),
            clock,
        )

        result = await editor.update_item(scope.id, item.id, target_text="gato")

        assert result.is_ok()
        stored = memory_db.items[item.id]
        assert stored.target_text == "gato"
        assert stored.box == 2
        assert stored.times_reviewed == 1
        assert memory_db.stats[scope.id].total_reviewed == 1

    async def test_review_keeps_edit_committed_meanwhile(self, memory_db, clock, scope):
        item, other = await self._setup(memory_db, clock, scope)
        reviewer = LeitnerService(
            InterleavingStore(memory_db, lambda: other.update_item(scope.id, item.id, target_text="gato")),
            clock,
        )

        result = await reviewer.process_review(scope.id, item.id, True)

        assert result.is_ok()
        stored = memory_db.items[item.id]
        assert stored.target_text == "gato"
        assert stored.box == 2
        assert stored.times_reviewed == 1

    async def test_edit_of_item_deleted_meanwhile(self, memory_db, clock, scope):
        item, other = await self._setup(memory_db, clock, scope)
        editor = LeitnerService(
            InterleavingStore(memory_db, lambda: other.delete_item(scope.id, item.id)),
            clock,
        )

        result = await editor.update_item(scope.id, item.id, target_text="gato")

        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND
        assert item.id not in memory_db.items

    async def test_stale_stats_write_is_rejected(self, memory_db, clock, scope):
        await self._setup(memory_db, clock, scope)
        stale = memory_db.stats[scope.id]
        await LeitnerService(memory_db.session(), clock).set_daily_goal(scope.id, 25)

        result = await memory_db.session().save_stats(replace(stale, daily_goal=5), expected_version=stale.version)
        assert isinstance(result, Err)
        assert result.unwrap_err().code is ErrorCode.E5002_STATE_CONFLICT


class TestIdempotency:

    async def test_replay_applies_nothing(self, service, scope):
        item = await add(service, scope, "cat")
        first = (await service.process_review(scope.id, item.id, True, idempotency_key="k-1")).unwrap()
        second = (await service.process_review(scope.id, item.id, True, idempotency_key="k-1")).unwrap()

        assert not first.replayed
        assert second.replayed
        assert second.item.times_reviewed == 1
        assert second.stats.total_reviewed == 1
        assert second.stats.xp == first.stats.xp

    async def test_key_reused_for_different_outcome(self, service, scope):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True, idempotency_key="k-1")

        result = await service.process_review(scope.id, item.id, False, idempotency_key="k-1")
        assert result.unwrap_err().code is ErrorCode.E5003_IDEMPOTENCY_KEY_REUSED

    async def test_key_reuse_is_not_retried(self, service, scope):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True, idempotency_key="k-1")
        policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay_seconds=0))

        outcome = await policy.execute(
            lambda: service.process_review(scope.id, item.id, False, idempotency_key="k-1")
        )

        assert outcome.attempts == 1
        assert outcome.result.unwrap_err().code is ErrorCode.E5003_IDEMPOTENCY_KEY_REUSED

    async def test_distinct_keys_both_apply(self, service, scope):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True, idempotency_key="k-1")
        outcome = (await service.process_review(scope.id, item.id, True, idempotency_key="k-2")).unwrap()

        assert outcome.item.times_reviewed == 2


class TestDailyRollover:

    async def test_streak_grows_after_active_day(self, service, scope, clock):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)

        clock.advance(days=1)
        stats = (await service.get_stats(scope.id)).unwrap()

        assert stats.streak == 1
        assert stats.today_reviewed == 0
        assert stats.last_active_date == clock.today()

    async def test_streak_resets_after_gap(self, service, scope, clock):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)
        clock.advance(days=1)
        await service.process_review(scope.id, item.id, True)

        clock.advance(days=3)
        assert (await service.get_stats(scope.id)).unwrap().streak == 0

    async def test_rollover_follows_calendar_timezone(self, store, scope):
        # 23:30 UTC is already the next day in Tokyo
        clock = FixedClock(T0.replace(hour=23, minute=30), tz="Asia/Tokyo")
        service = LeitnerService(store, clock)

        stats = (await service.get_stats(scope.id)).unwrap()
        assert stats.last_active_date == T0.date() + timedelta(days=1)


class TestItemEditing:

    async def test_update_content_keeps_schedule(self, service, scope):
        item = await add(service, scope, "cat")
        reviewed = (await service.process_review(scope.id, item.id, True)).unwrap().item

        updated = (await service.update_item(scope.id, item.id, target_text="gata", mnemonic="meow")).unwrap()

        assert updated.target_text == "gata"
        assert updated.mnemonic == "meow"
        assert updated.box == reviewed.box
        assert updated.next_review_at == reviewed.next_review_at

    async def test_scheduling_fields_not_editable(self, service, scope):
        item = await add(service, scope, "cat")
        result = await service.update_item(scope.id, item.id, box=5)
        assert result.unwrap_err().code is ErrorCode.E2000_VALIDATION_GENERIC

    async def test_rename_onto_existing_text(self, service, scope):
        await add(service, scope, "cat")
        dog = await add(service, scope, "dog")

        result = await service.update_item(scope.id, dog.id, source_text="cat")
        assert result.unwrap_err().code is ErrorCode.E4011_DUPLICATE_KEY

    async def test_delete_decrements_total_words(self, service, scope, memory_db):
        item = await add(service, scope, "cat")
        await add(service, scope, "dog")

        assert (await service.delete_item(scope.id, item.id)).is_ok()
        assert item.id not in memory_db.items
        assert (await service.get_stats(scope.id)).unwrap().total_words == 1

    async def test_total_words_never_negative(self, service, scope, memory_db):
        item = await add(service, scope, "cat")
        memory_db.stats[scope.id] = replace(memory_db.stats[scope.id], total_words=0)

        await service.delete_item(scope.id, item.id)
        assert memory_db.stats[scope.id].total_words == 0

    async def test_delete_missing(self, service, scope):
        result = await service.delete_item(scope.id, uuid4())
        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND


class TestQueries:

    async def test_due_items_and_box_counts(self, service, scope, clock):
        cat = await add(service, scope, "cat")
        await add(service, scope, "dog")
        await service.process_review(scope.id, cat.id, True)

        due = (await service.get_due_items(scope.id)).unwrap()
        assert [i.source_text for i in due] == ["dog"]

        later = (await service.get_due_items(scope.id, now=clock.now() + timedelta(hours=5))).unwrap()
        assert {i.source_text for i in later} == {"cat", "dog"}

        counts = (await service.get_box_counts(scope.id)).unwrap()
        assert counts == {1: 1, 2: 1, 3: 0, 4: 0, 5: 0}

    async def test_items_in_box_validates_range(self, service, scope):
        result = await service.get_items_in_box(scope.id, 6)
        assert result.unwrap_err().code is ErrorCode.E2003_OUT_OF_RANGE

    async def test_daily_goal_range(self, service, scope):
        assert (await service.set_daily_goal(scope.id, 0)).unwrap_err().code is ErrorCode.E2003_OUT_OF_RANGE
        assert (await service.set_daily_goal(scope.id, 201)).is_err()
        assert (await service.set_daily_goal(scope.id, 20)).unwrap().daily_goal == 20

    async def test_progress(self, service, scope):
        item = await add(service, scope, "cat")
        await service.set_daily_goal(scope.id, 4)
        await service.process_review(scope.id, item.id, True)
        await service.process_review(scope.id, item.id, False)

        progress = (await service.get_progress(scope.id)).unwrap()

        assert progress.level == 1
        assert progress.xp == 17
        assert progress.xp_in_level == 17
        assert progress.xp_for_next_level == 100
        assert progress.daily_goal_percent == 50
        assert progress.today_accuracy == 50

    async def test_weekly_activity(self, service, scope, clock):
        item = await add(service, scope, "cat")
        await service.process_review(scope.id, item.id, True)
        clock.advance(days=1)
        await service.process_review(scope.id, item.id, True)

        weekly = (await service.get_weekly_activity(scope.id)).unwrap()

        assert len(weekly.days) == 7
        assert weekly.days[-1].words_reviewed == 1
        assert weekly.days[-2].words_reviewed == 1
        assert weekly.active_days == 2
        assert weekly.history_streak == 2

    async def test_achievements_view(self, service, scope):
        await add(service, scope, "cat")
        statuses = (await service.get_achievements(scope.id)).unwrap()

        unlocked = {s.achievement.id for s in statuses if s.unlocked}
        assert unlocked == {"first_word"}
        assert len(statuses) > 1


class TestScopes:

    async def test_first_scope_is_active(self, service, scope):
        assert scope.is_active
        assert (await service.get_active_scope(SINGLE_USER_ID)).unwrap().id == scope.id

    async def test_activate_switches_active_scope(self, service, scope):
        second = (await service.create_scope(SINGLE_USER_ID, "en", "de")).unwrap()
        assert not second.is_active

        await service.activate_scope(SINGLE_USER_ID, second.id)

        scopes = (await service.list_scopes(SINGLE_USER_ID)).unwrap()
        assert [s.id for s in scopes if s.is_active] == [second.id]

    async def test_duplicate_pair_rejected(self, service, scope):
        result = await service.create_scope(SINGLE_USER_ID, "en", "es")
        assert result.unwrap_err().code is ErrorCode.E4011_DUPLICATE_KEY

    async def test_same_language_rejected(self, service):
        result = await service.create_scope(SINGLE_USER_ID, "en", "en")
        assert result.is_err()

    async def test_other_users_scope_is_hidden(self, service, scope):
        result = await service.resolve_scope(uuid4(), scope.id)
        assert result.unwrap_err().code is ErrorCode.E4010_NOT_FOUND

    async def test_resolve_defaults_to_active(self, service, scope):
        assert (await service.resolve_scope(SINGLE_USER_ID)).unwrap().id == scope.id
