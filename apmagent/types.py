"""
APM Agent Types

Shared enumerations and small value types used across the harvest core.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Any, Callable, Dict, List, Tuple


# === Attribute Destinations ===

class Destination(IntFlag):
    """Telemetry sinks an attribute may be routed to."""
    NONE = 0x00
    TRANS_EVENT = 0x01
    TRANS_TRACE = 0x02
    ERROR_EVENT = 0x04
    BROWSER_EVENT = 0x08
    SPAN_EVENT = 0x10
    TRANS_SEGMENT = 0x20

    TRANS_SCOPE = TRANS_EVENT | TRANS_TRACE | ERROR_EVENT | BROWSER_EVENT
    SEGMENT_SCOPE = SPAN_EVENT | TRANS_SEGMENT
    TRANS_COMMON = TRANS_EVENT | TRANS_TRACE | ERROR_EVENT
    LIMITED = TRANS_TRACE | ERROR_EVENT


@dataclass(frozen=True)
class DestinationDetail:
    """Binds a destination flag to its configuration section name."""
    id: Destination
    key: str
    name: str


TRANS_SCOPE_DETAILS: Tuple[DestinationDetail, ...] = (
    DestinationDetail(Destination.TRANS_EVENT, "TRANS_EVENT", "transaction_events"),
    DestinationDetail(Destination.TRANS_TRACE, "TRANS_TRACE", "transaction_tracer"),
    DestinationDetail(Destination.ERROR_EVENT, "ERROR_EVENT", "error_collector"),
    DestinationDetail(Destination.BROWSER_EVENT, "BROWSER_EVENT", "browser_monitoring"),
)

SEGMENT_SCOPE_DETAILS: Tuple[DestinationDetail, ...] = (
    DestinationDetail(Destination.SPAN_EVENT, "SPAN_EVENT", "span_events"),
    DestinationDetail(Destination.TRANS_SEGMENT, "TRANS_SEGMENT", "transaction_segments"),
)

DESTINATION_DETAILS: Tuple[DestinationDetail, ...] = TRANS_SCOPE_DETAILS + SEGMENT_SCOPE_DETAILS


# === Transactions ===

class TransactionType(str, Enum):
    """Kinds of top-level work."""
    WEB = "web"
    BACKGROUND = "background"

    @property
    def metric_prefix(self) -> str:
        return "WebTransaction" if self is TransactionType.WEB else "OtherTransaction"


# === Log Lines ===

@dataclass
class EagerLogLine:
    """A log line whose payload is already formatted."""
    value: Any

    def resolve(self) -> Any:
        return self.value


@dataclass
class LazyLogLine:
    """A log line formatted on demand at payload time."""
    factory: Callable[[], Any]

    def resolve(self) -> Any:
        return self.factory()


# === Payload Envelope ===

def build_envelope(
    common_attributes: Dict[str, Any],
    key: str,
    entries: List[Any],
) -> List[Dict[str, Any]]:
    """Wrap formatted entries in the single-element collector envelope."""
    return [{
        "common": {"attributes": common_attributes},
        key: entries,
    }]
