"""
APM Agent Transaction Trace Aggregator

Keeps the single slowest trace per harvest that crossed the trace threshold.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from apmagent.aggregators.base import Aggregator

logger = structlog.get_logger(__name__)


class TraceAggregator(Aggregator):
    """Sends the slowest trace to ``transaction_sample_data``."""

    def __init__(self, transport: Any, threshold_ms: float = 500.0, **kwargs: Any):
        kwargs.setdefault("limit", 1)
        super().__init__("transaction_sample_data", transport, **kwargs)
        self.threshold_ms = threshold_ms
        self._slowest = None

    @property
    def slowest(self):
        return self._slowest

    def add(self, trace) -> bool:
        """Keep ``trace`` if it exceeds the threshold and is slower than the current one."""
        if not self.enabled or not self.started:
            return False
        if trace.duration_ms <= self.threshold_ms:
            return False
        return self._keep(trace)

    def _keep(self, trace) -> bool:
        if self._slowest is None or trace.duration_ms > self._slowest.duration_ms:
            self._slowest = trace
            return True
        return False

    def reconfigure(self, config) -> None:
        self.threshold_ms = config.transaction_tracer.threshold_ms
        super().reconfigure(config)

    def to_payload(self) -> Optional[list]:
        if self._slowest is None:
            return None
        return [self.run_id, [self._slowest.to_json()]]

    def clear(self) -> None:
        self._slowest = None

    def _get_merge_data(self):
        return self._slowest

    def _merge(self, data) -> None:
        if data is not None:
            self._keep(data)
