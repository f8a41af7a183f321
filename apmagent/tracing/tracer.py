"""
APM Agent Tracer

A tracer times one unit of work inside a transaction. Nesting is tracked with
a context variable, so the parent of a new tracer is the innermost open tracer
of the same transaction in the current (async) context.

Tracers refer to their parent by id only; the owning transaction resolves it.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

import structlog

from apmagent.attributes.container import Attributes
from apmagent.metrics.collection import MetricCollection
from apmagent.tracing.timer import Timer
from apmagent.types import Destination

if TYPE_CHECKING:
    from apmagent.tracing.transaction import Transaction

logger = structlog.get_logger(__name__)

# Innermost open tracer in the current context
_current_tracer: ContextVar[Optional["Tracer"]] = ContextVar("current_tracer", default=None)

# Either a metric name or fn(tracer, unscoped, scoped)
MetricRecorder = Union[str, Callable[["Tracer", MetricCollection, Optional[MetricCollection]], None]]


def get_current_tracer() -> Optional["Tracer"]:
    return _current_tracer.get()


class Tracer:
    """
    Timed segment of a transaction.

    Usable as a context manager:

        with Tracer(transaction, "Datastore/select", "Datastore/all"):
            ...
    """

    def __init__(
        self,
        transaction: "Transaction",
        name: str,
        recorder: Optional[MetricRecorder] = None,
        parent: Optional["Tracer"] = None,
    ):
        if transaction is None:
            raise ValueError("Tracer requires a transaction")

        self.id = uuid.uuid4().hex[:16]
        self.name = name
        self.recorder = recorder
        self.transaction = transaction
        self.timer = Timer()
        self.child_duration_total = 0.0
        self.finished = False
        self._recorded = False

        self.attributes = Attributes("segment", filter_fn=transaction.segment_filter)

        if parent is None:
            parent = self._enclosing_tracer()
        self.parent_id: Optional[str] = parent.id if parent is not None else None

        self.timer.begin()
        self.pushed = transaction.push(self)
        if self.pushed:
            _current_tracer.set(self)

    def _enclosing_tracer(self) -> Optional["Tracer"]:
        candidate = _current_tracer.get()
        while candidate is not None:
            if candidate.transaction is self.transaction and not candidate.finished:
                return candidate
            candidate = candidate.parent

        root = self.transaction.root
        if root is not None and not root.finished:
            return root
        return None

    def __repr__(self) -> str:
        return f"Tracer(name={self.name!r}, id={self.id!r}, parent_id={self.parent_id!r})"

    def __enter__(self) -> "Tracer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.finish()

    @property
    def parent(self) -> Optional["Tracer"]:
        if self.parent_id is None:
            return None
        return self.transaction.get_tracer(self.parent_id)

    @property
    def is_root(self) -> bool:
        return self.transaction.root is self

    @property
    def duration_ms(self) -> float:
        return self.timer.get_duration_ms()

    @property
    def exclusive_duration_ms(self) -> float:
        return max(0.0, self.duration_ms - self.child_duration_total)

    def child_finished(self, duration_ms: float) -> None:
        self.child_duration_total += duration_ms

    def set_duration_ms(self, duration_ms: float) -> None:
        self.timer.set_duration_ms(duration_ms)

    def add_attribute(self, key: str, value: Any, truncate_exempt: bool = False) -> bool:
        return self.attributes.add_attribute(Destination.SEGMENT_SCOPE, key, value, truncate_exempt)

    def finish(self) -> None:
        """Stop timing and pop from the transaction. Safe to call repeatedly."""
        if self.finished:
            return
        self.finished = True
        self.timer.end()

        parent = self.parent
        if parent is not None:
            parent.child_finished(self.duration_ms)

        if _current_tracer.get() is self:
            _current_tracer.set(parent if parent is not None and not parent.finished else None)

        if self.pushed:
            self.transaction.pop(self)

    def record_metrics(
        self,
        unscoped: MetricCollection,
        scoped: Optional[MetricCollection] = None,
    ) -> None:
        """Run the metric recorder. Only the first call has any effect."""
        if self._recorded:
            return
        self._recorded = True

        if self.recorder is None:
            return
        if isinstance(self.recorder, str):
            unscoped.measure_milliseconds(self.recorder, self.duration_ms, self.exclusive_duration_ms)
            if scoped is not None:
                scoped.measure_milliseconds(self.recorder, self.duration_ms, self.exclusive_duration_ms)
        else:
            self.recorder(self, unscoped, scoped)

    def to_span_event(self) -> Dict[str, Any]:
        transaction = self.transaction
        intrinsics: Dict[str, Any] = {
            "type": "Span",
            "traceId": transaction.trace_id,
            "guid": self.id,
            "transactionId": transaction.id,
            "name": self.name,
            "timestamp": self.timer.start_epoch_ms,
            "duration": self.duration_ms / 1000,
            "category": "generic",
            "priority": transaction.priority,
        }
        if self.parent_id is not None:
            intrinsics["parentId"] = self.parent_id
        if self.is_root:
            intrinsics["nr.entryPoint"] = True

        return {
            "intrinsics": intrinsics,
            "attributes": self.attributes.get(Destination.SPAN_EVENT),
        }
