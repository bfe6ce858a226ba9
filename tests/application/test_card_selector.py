import random
from datetime import timedelta

import pytest

from collate.application.card_selector import (
    available_limits,
    partition_smart,
    preview_pool,
    select_cards,
)


@pytest.fixture
def now(clock):
    return clock.now()


def test_mastered_cards_never_selected(make_card, now):
    cards = [
        make_card("m1", mastered=True, latest_rating=5, rating_count=3, consecutive_fives=3),
        make_card("a"),
        make_card("m2", mastered=True, latest_rating=5, rating_count=4, consecutive_fives=3),
    ]
    for mode in ("smart", "all"):
        selected = select_cards(cards, mode, now=now, rng=random.Random(1))
        assert [c.id for c in selected] == ["a"]


def test_all_mastered_pool_is_empty(make_card, now):
    cards = [make_card(str(i), mastered=True) for i in range(3)]
    assert select_cards(cards, "smart", now=now) == []
    assert select_cards(cards, "all", now=now) == []


def test_smart_mode_orders_groups(make_card, now):
    due = make_card("due", latest_rating=4, rating_count=1, next_review_at=now - timedelta(hours=1))
    weak = make_card("weak", latest_rating=2, rating_count=1, next_review_at=now + timedelta(days=1))
    unseen = make_card("unseen")
    rest = make_card("rest", latest_rating=4, rating_count=2, next_review_at=now + timedelta(days=7))

    selected = select_cards([rest, unseen, weak, due], "smart", now=now, rng=random.Random(3))

    assert [c.id for c in selected] == ["due", "weak", "unseen", "rest"]


def test_smart_mode_keeps_group_order_under_shuffling(make_card, now):
    dues = [
        make_card(f"d{i}", latest_rating=3, rating_count=1, next_review_at=now - timedelta(days=1))
        for i in range(5)
    ]
    unseen = [make_card(f"u{i}") for i in range(5)]

    for seed in range(10):
        selected = select_cards(unseen + dues, "smart", now=now, rng=random.Random(seed))
        assert {c.id for c in selected[:5]} == {c.id for c in dues}
        assert {c.id for c in selected[5:]} == {c.id for c in unseen}


def test_due_takes_priority_over_weak(make_card, now):
    card = make_card("x", latest_rating=1, rating_count=1, next_review_at=now)
    partition = partition_smart([card], now)

    assert partition.due == [card]
    assert partition.weak == []


def test_partition_is_disjoint_and_complete(make_card, now):
    cards = [
        make_card("a", latest_rating=2, rating_count=1, next_review_at=now + timedelta(days=1)),
        make_card("b"),
        make_card("c", latest_rating=3, rating_count=1, next_review_at=now + timedelta(days=3)),
        make_card("d", latest_rating=5, rating_count=1, next_review_at=now - timedelta(seconds=1)),
        make_card("e", mastered=True),
    ]
    groups = partition_smart(cards, now).groups()
    ids = [c.id for group in groups for c in group]

    assert sorted(ids) == ["a", "b", "c", "d"]
    assert [[c.id for c in g] for g in groups] == [["d"], ["a"], ["b"], ["c"]]


def test_limit_truncates(make_card, now):
    cards = [make_card(str(i)) for i in range(30)]

    assert len(select_cards(cards, "all", 10, now=now)) == 10
    assert len(select_cards(cards, "smart", 25, now=now)) == 25
    assert len(select_cards(cards, "smart", 50, now=now)) == 30
    assert len(select_cards(cards, "smart", None, now=now)) == 30


def test_limit_applied_after_prioritizing(make_card, now):
    weak = [make_card(f"w{i}", latest_rating=1, rating_count=1) for i in range(3)]
    unseen = [make_card(f"u{i}") for i in range(10)]

    selected = select_cards(unseen + weak, "smart", 3, now=now, rng=random.Random(0))

    assert {c.id for c in selected} == {"w0", "w1", "w2"}


def test_all_mode_is_a_permutation(make_card, now):
    cards = [make_card(str(i)) for i in range(12)]
    selected = select_cards(cards, "all", now=now, rng=random.Random(5))

    assert sorted(c.id for c in selected) == sorted(c.id for c in cards)


@pytest.mark.parametrize("limit", [0, -3])
def test_rejects_non_positive_limit(make_card, now, limit):
    with pytest.raises(ValueError):
        select_cards([make_card()], "smart", limit, now=now)


def test_rejects_unknown_mode(make_card, now):
    with pytest.raises(ValueError, match="Unknown study mode"):
        select_cards([make_card()], "random", now=now)


def test_preview_counts(make_card, now):
    cards = [
        make_card("m", mastered=True, latest_rating=5, rating_count=3),
        make_card("w", latest_rating=2, rating_count=1, next_review_at=now + timedelta(days=1)),
        make_card("d", latest_rating=4, rating_count=1, next_review_at=now - timedelta(days=1)),
        make_card("u1"),
        make_card("u2"),
    ]
    preview = preview_pool(cards, now)

    assert preview.total == 5
    assert preview.mastered == 1
    assert preview.unmastered == 4
    assert preview.needs_review == 1
    assert preview.never_studied == 2
    assert preview.due_for_review == 1


def test_available_limits(make_card, now):
    small = preview_pool([make_card(str(i)) for i in range(12)], now)
    large = preview_pool([make_card(str(i)) for i in range(60)], now)
    tiny = preview_pool([make_card("only")], now)

    assert available_limits(small) == [10, None]
    assert available_limits(large) == [10, 25, 50, None]
    assert available_limits(tiny) == [None]
