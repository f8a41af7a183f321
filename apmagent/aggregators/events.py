"""
APM Agent Event Aggregators

Reservoir-backed aggregators for the event streams. Each stream records how
many events it saw, kept and dropped as supportability metrics.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

from apmagent.aggregators.base import Aggregator
from apmagent.aggregators.reservoir import PriorityReservoir, Reservoir
from apmagent.types import build_envelope

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SupportabilityNames:
    seen: str
    sent: str
    dropped: str


class EventAggregator(Aggregator):
    """
    Aggregator holding events in a bounded reservoir.

    Args:
        metrics: Anything with ``get_or_create_metric(name)``; receives the
            seen/sent/dropped counters.
        prioritized: Use a priority reservoir instead of a uniform one.
        common_attributes: Callable returning extra envelope attributes.
    """

    payload_key = "events"
    supportability: Optional[SupportabilityNames] = None

    def __init__(
        self,
        method: str,
        transport: Any,
        limit: int = 10000,
        metrics: Any = None,
        prioritized: bool = True,
        common_attributes: Optional[Callable[[], Dict[str, Any]]] = None,
        **kwargs: Any,
    ):
        super().__init__(method, transport, limit=limit, **kwargs)
        self.metrics = metrics
        self.prioritized = prioritized
        self._common_attributes = common_attributes
        self._items = self._make_reservoir(limit)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def enabled(self) -> bool:
        return self._enabled and self.limit > 0

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @property
    def events(self) -> Reservoir:
        return self._items

    @property
    def seen(self) -> int:
        return self._items.seen

    def _make_reservoir(self, limit: int) -> Reservoir:
        return PriorityReservoir(limit) if self.prioritized else Reservoir(limit)

    def _record(self, which: str) -> None:
        if self.metrics is None or self.supportability is None:
            return
        name = getattr(self.supportability, which)
        self.metrics.get_or_create_metric(name).increment_call_count()

    # === Collection ===

    def add(self, event: Any, priority: Optional[float] = None) -> bool:
        """Offer an event to the reservoir. Returns True if it was kept."""
        if not self.enabled or not self.started:
            return False

        self._record("seen")
        added = self._items.add(event, priority)
        self._record("sent" if added else "dropped")
        return added

    def set_limit(self, limit: int) -> None:
        previous = self.limit
        self.limit = limit
        if limit <= 0 or previous <= 0:
            self.clear()
        elif limit != previous:
            self._items.set_limit(limit)

    # === Sending ===

    def clear(self) -> None:
        self._items = self._make_reservoir(self.limit)

    def _get_merge_data(self) -> Reservoir:
        return self._items

    def _merge(self, data: Optional[Reservoir]) -> None:
        # already counted in supportability metrics when first offered
        if data is not None:
            self._items.merge(data)

    def common_attributes(self) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "reservoir_size": self.limit,
            "events_seen": self._items.seen,
        }
        if self._common_attributes is not None:
            attributes.update(self._common_attributes())
        return attributes

    def _format_entry(self, entry: Any) -> Any:
        json.dumps(entry)
        return entry

    def to_payload(self) -> Any:
        if len(self._items) == 0:
            logger.debug("No events to send", method=self.method)
            return None

        entries = []
        for raw in self._items.to_list():
            try:
                formatted = self._format_entry(raw)
            except Exception as e:
                logger.debug("Dropping event that failed to format", method=self.method, error=str(e))
                continue
            if formatted:
                entries.append(formatted)

        if not entries:
            return None

        return build_envelope(self.common_attributes(), self.payload_key, entries)


class TransactionEventAggregator(EventAggregator):
    supportability = SupportabilityNames(
        seen="Supportability/AnalyticsEvents/TotalEventsSeen",
        sent="Supportability/AnalyticsEvents/TotalEventsSent",
        dropped="Supportability/AnalyticsEvents/Discarded",
    )

    def __init__(self, transport: Any, limit: int = 10000, **kwargs: Any):
        super().__init__("analytic_event_data", transport, limit=limit, **kwargs)


class CustomEventAggregator(EventAggregator):
    supportability = SupportabilityNames(
        seen="Supportability/Events/Customer/Seen",
        sent="Supportability/Events/Customer/Sent",
        dropped="Supportability/Events/Customer/Dropped",
    )

    def __init__(self, transport: Any, limit: int = 3000, **kwargs: Any):
        super().__init__("custom_event_data", transport, limit=limit, **kwargs)


class ErrorEventAggregator(EventAggregator):
    supportability = SupportabilityNames(
        seen="Supportability/Events/TransactionError/Seen",
        sent="Supportability/Events/TransactionError/Sent",
        dropped="Supportability/Events/TransactionError/Dropped",
    )

    def __init__(self, transport: Any, limit: int = 100, **kwargs: Any):
        super().__init__("error_event_data", transport, limit=limit, **kwargs)


class SpanEventAggregator(EventAggregator):
    payload_key = "spans"
    supportability = SupportabilityNames(
        seen="Supportability/SpanEvent/TotalEventsSeen",
        sent="Supportability/SpanEvent/TotalEventsSent",
        dropped="Supportability/SpanEvent/Discarded",
    )

    def __init__(self, transport: Any, limit: int = 2000, **kwargs: Any):
        super().__init__("span_event_data", transport, limit=limit, **kwargs)
