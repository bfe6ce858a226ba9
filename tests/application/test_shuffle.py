import random
from collections import Counter
from unittest.mock import MagicMock

from collate.application.shuffle import shuffle


def test_shuffle_returns_permutation_and_leaves_input_alone():
    items = list(range(20))
    result = shuffle(items, random.Random(7))

    assert sorted(result) == items
    assert items == list(range(20))
    assert result is not items


def test_shuffle_empty_and_single():
    assert shuffle([]) == []
    assert shuffle(["only"]) == ["only"]


def test_shuffle_is_reproducible_with_seed():
    assert shuffle("abcdef", random.Random(42)) == shuffle("abcdef", random.Random(42))


def test_shuffle_walks_backwards_through_the_list():
    # randint always picking the top index keeps the order unchanged
    rng = MagicMock()
    rng.randint.side_effect = lambda lo, hi: hi

    assert shuffle([1, 2, 3, 4], rng) == [1, 2, 3, 4]
    assert [c.args for c in rng.randint.call_args_list] == [(0, 3), (0, 2), (0, 1)]


def test_shuffle_is_roughly_uniform():
    rng = random.Random(0)
    counts = Counter(tuple(shuffle("abc", rng)) for _ in range(6000))

    assert len(counts) == 6
    for count in counts.values():
        # expectation is 1000 per permutation
        assert 850 < count < 1150
