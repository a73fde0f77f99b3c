from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from engines.leitner import (
    BOX_INTERVALS,
    MAX_BOX,
    advance,
    counts_by_box,
    due_items,
    entered_top_box,
    is_due,
    items_in_box,
    next_box,
    order_for_session,
)
from engines.types import LearnableItem
from conftest import T0


def make_item(box: int = 1, next_review_at=T0, **kwargs) -> LearnableItem:
    return LearnableItem(
        id=uuid4(),
        scope_id=kwargs.pop("scope_id", uuid4()),
        source_text=kwargs.pop("source_text", "cat"),
        target_text="gato",
        source_language="en",
        target_language="es",
        box=box,
        next_review_at=next_review_at,
        created_at=T0,
        **kwargs,
    )


class TestNextBox:

    @pytest.mark.parametrize("box,expected", [(1, 2), (2, 3), (3, 4), (4, 5), (5, 5)])
    def test_correct_promotes_and_caps(self, box, expected):
        assert next_box(box, True) == expected

    @pytest.mark.parametrize("box", [1, 2, 3, 4, 5])
    def test_wrong_resets_to_first_box(self, box):
        assert next_box(box, False) == 1

    @pytest.mark.parametrize("box", [0, 6, -1])
    def test_rejects_box_outside_range(self, box):
        with pytest.raises(ValueError):
            next_box(box, True)


class TestAdvance:

    def test_box_three_correct_schedules_five_days_out(self):
        item = make_item(box=3)
        advanced = advance(item, True, T0)

        assert advanced.box == 4
        assert advanced.next_review_at == T0 + timedelta(days=5)
        assert advanced.last_reviewed_at == T0

    def test_wrong_answer_schedules_one_hour_out(self):
        advanced = advance(make_item(box=4), False, T0)

        assert advanced.box == 1
        assert advanced.next_review_at == T0 + timedelta(hours=1)

    def test_top_box_correct_stays_and_waits_thirty_days(self):
        advanced = advance(make_item(box=MAX_BOX), True, T0)

        assert advanced.box == MAX_BOX
        assert advanced.next_review_at == T0 + timedelta(days=30)

    def test_counters_are_conserved(self):
        item = make_item()
        for correct in (True, False, True, True, False):
            item = advance(item, correct, T0)

        assert item.times_reviewed == 5
        assert item.times_correct == 3
        assert item.times_incorrect == 2
        assert item.times_correct + item.times_incorrect == item.times_reviewed

    def test_content_fields_untouched(self):
        item = make_item(box=2, mnemonic="meow", example_sentences=("the cat sleeps",))
        advanced = advance(item, True, T0)

        assert advanced.id == item.id
        assert advanced.source_text == item.source_text
        assert advanced.mnemonic == "meow"
        assert advanced.example_sentences == ("the cat sleeps",)
        assert advanced.created_at == item.created_at

    def test_every_box_has_an_interval(self):
        assert sorted(BOX_INTERVALS) == [1, 2, 3, 4, 5]
        assert list(BOX_INTERVALS.values()) == sorted(BOX_INTERVALS.values())


class TestEnteredTopBox:

    def test_only_the_promotion_into_box_five_counts(self):
        four = make_item(box=4)
        assert entered_top_box(four, advance(four, True, T0))

        five = make_item(box=5)
        assert not entered_top_box(five, advance(five, True, T0))
        assert not entered_top_box(four, advance(four, False, T0))


class TestSelection:

    def test_due_at_exact_instant(self):
        item = make_item(next_review_at=T0)
        assert is_due(item, T0)
        assert not is_due(item, T0 - timedelta(milliseconds=1))

    def test_reviewed_item_leaves_due_set(self):
        item = make_item(next_review_at=T0)
        advanced = advance(item, True, T0)

        assert due_items([advanced], T0 + timedelta(milliseconds=1)) == []

    def test_due_items_filters_future(self):
        past = make_item(next_review_at=T0 - timedelta(hours=2))
        future = make_item(next_review_at=T0 + timedelta(minutes=1))

        assert due_items([past, future], T0) == [past]

    def test_session_order_most_overdue_first_then_lower_box(self):
        a = make_item(box=3, next_review_at=T0 - timedelta(hours=1))
        b = make_item(box=1, next_review_at=T0 - timedelta(days=1))
        c = make_item(box=1, next_review_at=T0 - timedelta(hours=1))

        assert order_for_session([a, b, c], T0) == [b, c, a]

    def test_histogram_covers_all_boxes_and_sums_to_count(self):
        items = [make_item(box=b) for b in (1, 1, 3, 5)]
        counts = counts_by_box(items)

        assert counts == {1: 2, 2: 0, 3: 1, 4: 0, 5: 1}
        assert sum(counts.values()) == len(items)

    def test_empty_histogram(self):
        assert counts_by_box([]) == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}

    def test_items_in_box(self):
        first = make_item(box=2)
        items = [first, make_item(box=3), replace(first, id=uuid4())]

        assert len(items_in_box(items, 2)) == 2
        assert items_in_box(items, 4) == []
