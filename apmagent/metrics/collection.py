"""
APM Agent Metric Collections

Timeslice metric accumulation. Durations are recorded in seconds, matching the
collector's metric_data format:

    [call_count, total, total_exclusive, min, max, sum_of_squares]
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass
class MetricStats:
    """Accumulated statistics for one metric name."""
    call_count: int = 0
    total: float = 0.0
    total_exclusive: float = 0.0
    min: float = 0.0
    max: float = 0.0
    sum_of_squares: float = 0.0

    def record_value(self, total: float, exclusive: Optional[float] = None) -> None:
        """Record a single measurement."""
        if exclusive is None:
            exclusive = total

        if self.call_count > 0:
            self.min = min(total, self.min)
        else:
            self.min = total
        self.max = max(total, self.max)

        self.call_count += 1
        self.total += total
        self.total_exclusive += exclusive
        self.sum_of_squares += total * total

    def increment_call_count(self, count: int = 1) -> None:
        self.call_count += count

    def merge(self, other: "MetricStats") -> None:
        if other.call_count > 0:
            if self.call_count > 0:
                self.min = min(self.min, other.min)
            else:
                self.min = other.min
        self.max = max(self.max, other.max)

        self.call_count += other.call_count
        self.total += other.total
        self.total_exclusive += other.total_exclusive
        self.sum_of_squares += other.sum_of_squares

    def to_json(self) -> List[float]:
        return [
            self.call_count,
            self.total,
            self.total_exclusive,
            self.min,
            self.max,
            self.sum_of_squares,
        ]


class MetricCollection:
    """Metrics keyed by name within one scope."""

    def __init__(self):
        self._stats: Dict[str, MetricStats] = {}

    def __len__(self) -> int:
        return len(self._stats)

    def __contains__(self, name: str) -> bool:
        return name in self._stats

    def items(self) -> Iterator[Tuple[str, MetricStats]]:
        return iter(self._stats.items())

    def get(self, name: str) -> Optional[MetricStats]:
        return self._stats.get(name)

    def get_or_create(self, name: str) -> MetricStats:
        stats = self._stats.get(name)
        if stats is None:
            stats = MetricStats()
            self._stats[name] = stats
        return stats

    def measure_milliseconds(
        self,
        name: str,
        duration_ms: float,
        exclusive_ms: Optional[float] = None,
    ) -> MetricStats:
        stats = self.get_or_create(name)
        stats.record_value(
            duration_ms / 1000,
            None if exclusive_ms is None else exclusive_ms / 1000,
        )
        return stats

    def merge(self, other: "MetricCollection") -> None:
        for name, stats in other.items():
            self.get_or_create(name).merge(stats)


class Metrics:
    """
    Unscoped metrics plus one collection per transaction scope.

    ``started`` is the wall-clock second the collection began accumulating
    and becomes the start of the reported harvest window.
    """

    def __init__(self):
        self.started = time.time()
        self.unscoped = MetricCollection()
        self._scoped: Dict[str, MetricCollection] = {}

    @property
    def empty(self) -> bool:
        return len(self.unscoped) == 0 and not any(len(c) for c in self._scoped.values())

    def scoped(self, scope: str) -> MetricCollection:
        collection = self._scoped.get(scope)
        if collection is None:
            collection = MetricCollection()
            self._scoped[scope] = collection
        return collection

    def _collection(self, scope: Optional[str]) -> MetricCollection:
        return self.scoped(scope) if scope else self.unscoped

    def get_or_create_metric(self, name: str, scope: Optional[str] = None) -> MetricStats:
        return self._collection(scope).get_or_create(name)

    def get_metric(self, name: str, scope: Optional[str] = None) -> Optional[MetricStats]:
        if scope:
            collection = self._scoped.get(scope)
            return collection.get(name) if collection is not None else None
        return self.unscoped.get(name)

    def measure_milliseconds(
        self,
        name: str,
        scope: Optional[str],
        duration_ms: float,
        exclusive_ms: Optional[float] = None,
    ) -> MetricStats:
        return self._collection(scope).measure_milliseconds(name, duration_ms, exclusive_ms)

    def merge(self, other: "Metrics", adjust_started: bool = True) -> None:
        """Fold ``other`` into this collection."""
        if adjust_started:
            self.started = min(self.started, other.started)

        self.unscoped.merge(other.unscoped)
        for scope, collection in other._scoped.items():
            self.scoped(scope).merge(collection)

    def to_json(self) -> List[List[Any]]:
        data: List[List[Any]] = [
            [{"name": name}, stats.to_json()] for name, stats in self.unscoped.items()
        ]
        for scope, collection in self._scoped.items():
            data.extend(
                [{"name": name, "scope": scope}, stats.to_json()]
                for name, stats in collection.items()
            )
        return data
