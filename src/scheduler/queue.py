"""Bounded priority queue: highest priority first, FIFO among equals."""

from __future__ import annotations

import heapq
import itertools
from typing import Callable

from src.contracts.errors import QueueFullError
from src.contracts.queue import QueueItem


class PriorityQueue:
    """Heap of ``(-priority, seq, item_id)`` plus an id → item index.

    Removal (cancel) is lazy: the id leaves the index and its heap entry is
    discarded when it surfaces.
    """

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self._heap: list[tuple[int, int, str]] = []
        self._items: dict[str, QueueItem] = {}
        self._seq = itertools.count()

    def push(self, item: QueueItem) -> None:
        if len(self._items) >= self.max_size:
            raise QueueFullError(self.max_size)
        self._items[item.id] = item
        heapq.heappush(self._heap, (-item.priority, next(self._seq), item.id))

    def pop(self, skip: Callable[[QueueItem], bool] | None = None) -> QueueItem | None:
        """Remove and return the next item, passing over items *skip* holds.

        Held items keep their original position.
        """
        held: list[tuple[int, int, str]] = []
        found: QueueItem | None = None
        while self._heap:
            entry = heapq.heappop(self._heap)
            item = self._items.get(entry[2])
            if item is None:
                continue
            if skip is not None and skip(item):
                held.append(entry)
                continue
            found = self._items.pop(entry[2])
            break
        for entry in held:
            heapq.heappush(self._heap, entry)
        return found

    def remove(self, item_id: str) -> QueueItem | None:
        return self._items.pop(item_id, None)

    def get(self, item_id: str) -> QueueItem | None:
        return self._items.get(item_id)

    def ordered(self) -> list[QueueItem]:
        """Items in pop order."""
        return [self._items[i] for _, _, i in sorted(self._heap) if i in self._items]

    def is_full(self) -> bool:
        return len(self._items) >= self.max_size

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items
