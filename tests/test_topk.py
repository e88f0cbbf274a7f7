from __future__ import annotations

import random

import pytest

from src.sieve.topk import BoundedTopK


def test_matches_full_sort_reference_on_random_inputs() -> None:
    rng = random.Random(1234)
    for _ in range(300):
        total = rng.randint(0, 40)
        capacity = rng.randint(1, 12)
        # coarse scores force plenty of ties
        items = [(rng.randint(0, 6) / 2.0, index) for index in range(total)]
        rng.shuffle(items)

        selector: BoundedTopK[int] = BoundedTopK(capacity)
        for score, index in items:
            selector.push(score, index, order=index)

        expected = [index for _, index in sorted(items, key=lambda pair: (-pair[0], pair[1]))[:capacity]]
        assert selector.items() == expected
        assert len(selector) == min(total, capacity)


def test_insertion_order_breaks_ties_by_default() -> None:
    selector: BoundedTopK[str] = BoundedTopK(2)
    for name in ("a", "b", "c"):
        selector.push(1.0, name)
    assert selector.items() == ["a", "b"]


def test_scored_items_are_best_first() -> None:
    selector: BoundedTopK[str] = BoundedTopK(3)
    for score, name in ((0.2, "low"), (0.9, "high"), (0.5, "mid"), (0.1, "lowest")):
        selector.push(score, name)
    assert selector.scored_items() == [(0.9, "high"), (0.5, "mid"), (0.2, "low")]


def test_zero_capacity_keeps_nothing() -> None:
    selector: BoundedTopK[int] = BoundedTopK(0)
    selector.push(1.0, 1)
    assert selector.items() == []


def test_negative_capacity_is_rejected() -> None:
    with pytest.raises(ValueError):
        BoundedTopK(-1)
