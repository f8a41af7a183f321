"""
APM Agent Transaction Trace

Renders a finished transaction as a tree of timed segments:

    [start_offset_ms, end_offset_ms, name, attributes, [children...]]

Offsets are relative to the start of the root segment.
"""

from __future__ import annotations

from typing import Any, Dict, List

from apmagent.tracing.segment_tree import Node, SegmentTree
from apmagent.tracing.transaction import Transaction
from apmagent.types import Destination


class Trace:
    def __init__(self, transaction: Transaction):
        if transaction.root is None:
            raise ValueError("Trace requires a transaction with a root tracer")

        self.transaction = transaction
        self.tree = SegmentTree(transaction.root)
        for tracer in transaction.tracers[1:]:
            self.tree.add(tracer)

    @property
    def duration_ms(self) -> float:
        return self.transaction.duration_ms

    def to_json(self) -> Dict[str, Any]:
        transaction = self.transaction
        return {
            "transaction": transaction.full_name or transaction.get_full_name(),
            "start_time_ms": transaction.root.timer.start_epoch_ms,
            "duration_ms": self.duration_ms,
            "guid": transaction.id,
            "attributes": transaction.attributes.get(Destination.TRANS_TRACE),
            "root": self._node_to_json(self.tree.root),
        }

    def _node_to_json(self, node: Node) -> List[Any]:
        tracer = node.segment
        start = tracer.timer.offset_ms(self.transaction.root.timer)
        return [
            start,
            start + tracer.duration_ms,
            tracer.name,
            tracer.attributes.get(Destination.TRANS_SEGMENT),
            [self._node_to_json(child) for child in node.children],
        ]
