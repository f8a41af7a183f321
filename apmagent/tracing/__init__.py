"""Transactions, tracers and trace rendering."""

from apmagent.tracing.segment_tree import Node, SegmentTree
from apmagent.tracing.timer import Timer
from apmagent.tracing.trace import Trace
from apmagent.tracing.tracer import Tracer, get_current_tracer
from apmagent.tracing.transaction import Transaction

__all__ = [
    "Node",
    "SegmentTree",
    "Timer",
    "Trace",
    "Tracer",
    "Transaction",
    "get_current_tracer",
]
