"""
APM Agent Metric Aggregator

Accumulates timeslice metrics between harvests and sends them to
``metric_data`` as ``[run_id, start_seconds, end_seconds, metrics]``.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import structlog

from apmagent.aggregators.base import Aggregator
from apmagent.metrics.collection import Metrics, MetricStats

logger = structlog.get_logger(__name__)


class MetricAggregator(Aggregator):
    """Harvestable store for timeslice metrics."""

    def __init__(self, transport: Any, **kwargs: Any):
        super().__init__("metric_data", transport, **kwargs)
        self._metrics = Metrics()

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def empty(self) -> bool:
        return self._metrics.empty

    def get_or_create_metric(self, name: str, scope: Optional[str] = None) -> MetricStats:
        return self._metrics.get_or_create_metric(name, scope)

    def get_metric(self, name: str, scope: Optional[str] = None) -> Optional[MetricStats]:
        return self._metrics.get_metric(name, scope)

    def measure_milliseconds(
        self,
        name: str,
        scope: Optional[str],
        duration_ms: float,
        exclusive_ms: Optional[float] = None,
    ) -> MetricStats:
        return self._metrics.measure_milliseconds(name, scope, duration_ms, exclusive_ms)

    def merge(self, metrics: Metrics) -> None:
        """Fold a transaction's metrics in without moving the window start."""
        self._metrics.merge(metrics, adjust_started=False)

    def to_payload(self) -> Optional[list]:
        if self._metrics.empty:
            logger.debug("No metrics to send")
            return None
        return [self.run_id, self._metrics.started, time.time(), self._metrics.to_json()]

    def clear(self) -> None:
        self._metrics = Metrics()

    def _get_merge_data(self) -> Metrics:
        return self._metrics

    def _merge(self, data: Optional[Metrics]) -> None:
        if data is not None:
            self._metrics.merge(data)
