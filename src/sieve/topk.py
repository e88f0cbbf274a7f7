"""Fixed-capacity selection of the highest-scoring items."""
from __future__ import annotations

import heapq
import itertools
from typing import Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class BoundedTopK(Generic[T]):
    """Keeps the ``capacity`` largest items seen so far in a min-heap.

    Items with equal scores are ranked by ``order`` (lower wins), so the
    selection is deterministic. ``order`` defaults to insertion order.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, received: {capacity}")
        self._capacity = capacity
        self._heap: List[Tuple[float, int, T]] = []
        self._counter = itertools.count()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, score: float, item: T, order: Optional[int] = None) -> None:
        if self._capacity == 0:
            return
        rank = next(self._counter) if order is None else order
        # the heap root is the weakest entry: lowest score, then latest order
        entry = (float(score), -rank, item)
        if len(self._heap) < self._capacity:
            heapq.heappush(self._heap, entry)
        else:
            heapq.heappushpop(self._heap, entry)

    def items(self) -> List[T]:
        """Return the kept items, best first."""

        return [item for _, _, item in sorted(self._heap, key=lambda entry: (-entry[0], -entry[1]))]

    def scored_items(self) -> List[Tuple[float, T]]:
        return [(score, item) for score, _, item in sorted(self._heap, key=lambda entry: (-entry[0], -entry[1]))]
