"""Harvestable data stores, one per collector method."""

from apmagent.aggregators.base import Aggregator
from apmagent.aggregators.events import (
    CustomEventAggregator,
    ErrorEventAggregator,
    EventAggregator,
    SpanEventAggregator,
    SupportabilityNames,
    TransactionEventAggregator,
)
from apmagent.aggregators.logs import LogAggregator
from apmagent.aggregators.metrics import MetricAggregator
from apmagent.aggregators.reservoir import PriorityReservoir, Reservoir
from apmagent.aggregators.traces import TraceAggregator

__all__ = [
    "Aggregator",
    "CustomEventAggregator",
    "ErrorEventAggregator",
    "EventAggregator",
    "LogAggregator",
    "MetricAggregator",
    "PriorityReservoir",
    "Reservoir",
    "SpanEventAggregator",
    "SupportabilityNames",
    "TraceAggregator",
    "TransactionEventAggregator",
]
