"""
APM Agent Reservoirs

Bounded samplers for event streams.

``Reservoir`` keeps a uniform random sample (Algorithm R). ``PriorityReservoir``
keeps the highest-priority entries in a min-heap so the cheapest eviction
candidate is always at the top.
"""

from __future__ import annotations

import heapq
import random
from typing import Any, Iterator, List, Optional, Tuple


class Reservoir:
    """Uniform reservoir sample of at most ``limit`` values."""

    def __init__(self, limit: int = 10):
        self.limit = limit
        self.seen = 0
        self._items: List[Any] = []

    def __len__(self) -> int:
        return len(self._items)

    def add(self, value: Any, priority: Optional[float] = None) -> bool:
        """Offer a value. Returns True if it is now in the sample."""
        self.seen += 1
        if self.limit <= 0:
            return False

        if len(self._items) < self.limit:
            self._items.append(value)
            return True

        slot = random.randrange(self.seen)
        if slot < self.limit:
            self._items[slot] = value
            return True
        return False

    def entries(self) -> Iterator[Tuple[Any, Optional[float]]]:
        for value in self._items:
            yield value, None

    def to_list(self) -> List[Any]:
        return list(self._items)

    def set_limit(self, limit: int) -> None:
        self.limit = limit
        if len(self._items) > max(limit, 0):
            self._items = random.sample(self._items, max(limit, 0))

    def merge(self, other: "Reservoir") -> None:
        """Offer every entry of ``other`` and account for what it had already dropped."""
        for value, priority in other.entries():
            self.add(value, priority)
        self.seen += other.seen - len(other)

    def clear(self) -> None:
        self._items = []
        self.seen = 0


class _Entry:
    __slots__ = ("priority", "value")

    def __init__(self, priority: float, value: Any):
        self.priority = priority
        self.value = value

    def __lt__(self, other: "_Entry") -> bool:
        return self.priority < other.priority


class PriorityReservoir(Reservoir):
    """
    Keeps the ``limit`` highest-priority values.

    A value whose priority equals the current minimum may displace one of the
    tied entries with probability ``ties / seen``. Values offered without a
    priority get a random one.
    """

    def __init__(self, limit: int = 10):
        super().__init__(limit)
        self._heap: List[_Entry] = []

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def minimum_priority(self) -> Optional[float]:
        return self._heap[0].priority if self._heap else None

    def add(self, value: Any, priority: Optional[float] = None) -> bool:
        self.seen += 1
        if self.limit <= 0:
            return False
        if priority is None:
            priority = random.random()

        entry = _Entry(priority, value)
        if len(self._heap) < self.limit:
            heapq.heappush(self._heap, entry)
            return True

        minimum = self._heap[0].priority
        if priority > minimum:
            heapq.heapreplace(self._heap, entry)
            return True

        if priority == minimum:
            tied = [i for i, e in enumerate(self._heap) if e.priority == minimum]
            slot = random.randrange(self.seen)
            if slot < len(tied):
                # same priority, heap order is unaffected
                self._heap[tied[slot]] = entry
                return True

        return False

    def entries(self) -> Iterator[Tuple[Any, Optional[float]]]:
        for entry in self._heap:
            yield entry.value, entry.priority

    def to_list(self) -> List[Any]:
        return [entry.value for entry in sorted(self._heap, key=lambda e: e.priority, reverse=True)]

    def set_limit(self, limit: int) -> None:
        self.limit = limit
        while len(self._heap) > max(limit, 0):
            heapq.heappop(self._heap)

    def clear(self) -> None:
        self._heap = []
        self.seen = 0
