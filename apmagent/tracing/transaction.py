"""
APM Agent Transaction

A transaction is the top-level unit of work (a web request or a background
job). It owns every tracer created for it and finishes when its root tracer
is popped.
"""

from __future__ import annotations

import random
import uuid
from typing import Any, Dict, List, Optional

import structlog

from apmagent.attributes.container import Attributes
from apmagent.core.events import EventSource
from apmagent.metrics.collection import Metrics
from apmagent.tracing.tracer import MetricRecorder, Tracer
from apmagent.types import Destination, TransactionType

logger = structlog.get_logger(__name__)


class Transaction(EventSource):
    """
    Tracks the tracers of one unit of work.

    Emits ``transaction_finished`` (with itself) exactly once, after all
    tracer metrics have been recorded.
    """

    FINISHED_EVENT = "transaction_finished"

    def __init__(
        self,
        name: Optional[str] = None,
        url: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.WEB,
        attribute_filter=None,
        normalizer=None,
        priority: Optional[float] = None,
    ):
        self.id = uuid.uuid4().hex[:16]
        self.trace_id = uuid.uuid4().hex
        self.name = name
        self.url = url
        self.type = TransactionType(transaction_type)
        self.status_code: Optional[int] = None
        self.priority = priority if priority is not None else random.random()

        self.attribute_filter = attribute_filter
        self.normalizer = normalizer
        self.attributes = Attributes(
            "transaction",
            filter_fn=attribute_filter.filter_transaction if attribute_filter is not None else None,
        )
        self.metrics = Metrics()

        self.tracers: List[Tracer] = []
        self._tracers_by_id: Dict[str, Tracer] = {}
        self.full_name: Optional[str] = None
        self.finished = False
        self._finishing = False

    def __repr__(self) -> str:
        return f"Transaction(id={self.id!r}, name={self.full_name or self.name!r})"

    @property
    def segment_filter(self):
        return self.attribute_filter.filter_segment if self.attribute_filter is not None else None

    @property
    def root(self) -> Optional[Tracer]:
        return self.tracers[0] if self.tracers else None

    @property
    def duration_ms(self) -> float:
        root = self.root
        return root.duration_ms if root is not None else 0.0

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.end()

    def end(self) -> None:
        """Finish the root tracer, which finishes the transaction."""
        root = self.root
        if root is not None:
            root.finish()

    def is_web(self) -> bool:
        return self.type is TransactionType.WEB

    def trace(self, name: str, recorder: Optional[MetricRecorder] = None) -> Tracer:
        """Create a tracer in this transaction."""
        return Tracer(self, name, recorder)

    def add_attribute(self, key: str, value: Any, truncate_exempt: bool = False) -> bool:
        return self.attributes.add_attribute(Destination.TRANS_SCOPE, key, value, truncate_exempt)

    # === Tracer Registry ===

    def get_tracer(self, tracer_id: str) -> Optional[Tracer]:
        return self._tracers_by_id.get(tracer_id)

    def push(self, tracer: Tracer) -> bool:
        if self.finished:
            logger.error(
                "Cannot add tracer to finished transaction",
                transaction_id=self.id,
                tracer=tracer.name,
            )
            return False

        self.tracers.append(tracer)
        self._tracers_by_id[tracer.id] = tracer
        return True

    def pop(self, tracer: Tracer) -> None:
        if self.finished:
            logger.error(
                "Cannot pop tracer from finished transaction",
                transaction_id=self.id,
                tracer=tracer.name,
            )
            return
        if tracer.id not in self._tracers_by_id:
            logger.error(
                "Cannot pop tracer not registered with transaction",
                transaction_id=self.id,
                tracer=tracer.name,
            )
            return

        if tracer is self.root and not self._finishing:
            self._finish()

    # === Completion ===

    def _finish(self) -> None:
        self._finishing = True

        # innermost first so parents see every child duration
        for tracer in reversed(self.tracers):
            if not tracer.finished:
                logger.debug(
                    "Force-finishing open tracer",
                    tracer=tracer.name,
                    duration_ms=tracer.duration_ms,
                )
                tracer.finish()

        self.finished = True
        self.full_name = self.get_full_name()
        self._record_metrics()

        logger.debug(
            "Transaction finished",
            transaction_id=self.id,
            name=self.full_name,
            duration_ms=self.duration_ms,
            tracer_count=len(self.tracers),
        )
        self._emit(self.FINISHED_EVENT, self)

    def get_full_name(self) -> str:
        if self.name:
            partial = self.name
        elif self.url:
            partial = "Uri" + (self.url if self.url.startswith("/") else "/" + self.url)
        else:
            partial = "Unknown"

        full_name = f"{self.type.metric_prefix}/{partial}"
        if self.normalizer is not None:
            full_name = self.normalizer.normalize(full_name).value
        return full_name

    def _record_metrics(self) -> None:
        unscoped = self.metrics.unscoped
        scoped = self.metrics.scoped(self.full_name)
        for tracer in self.tracers:
            tracer.record_metrics(unscoped, scoped)

        root = self.root
        self.metrics.measure_milliseconds(
            self.full_name, None, root.duration_ms, root.exclusive_duration_ms
        )
        rollup = "WebTransaction" if self.is_web() else "OtherTransaction/all"
        self.metrics.measure_milliseconds(rollup, None, root.duration_ms)

    # === Serialization ===

    def to_event(self) -> List[Dict[str, Any]]:
        """Transaction event as ``[intrinsics, attributes]``."""
        root = self.root
        intrinsics: Dict[str, Any] = {
            "type": "Transaction",
            "name": self.full_name or self.get_full_name(),
            "timestamp": root.timer.start_epoch_ms if root is not None else None,
            "duration": self.duration_ms / 1000,
            "guid": self.id,
            "traceId": self.trace_id,
            "priority": self.priority,
        }
        if self.status_code is not None:
            intrinsics["httpResponseCode"] = self.status_code
        return [intrinsics, self.attributes.get(Destination.TRANS_EVENT)]
