"""
APM Agent Log Aggregator

Forwards application log lines. Lines may be given already formatted or as a
zero-argument callable; callables are only resolved when a payload is built,
so lines that are sampled out never pay for formatting.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import structlog

from apmagent.aggregators.events import EventAggregator, SupportabilityNames
from apmagent.types import EagerLogLine, LazyLogLine

logger = structlog.get_logger(__name__)


class LogAggregator(EventAggregator):
    """Reservoir of forwarded log lines, sent to ``log_event_data``."""

    payload_key = "logs"
    supportability = SupportabilityNames(
        seen="Supportability/Logging/Forwarding/Seen",
        sent="Supportability/Logging/Forwarding/Sent",
        dropped="Supportability/Logging/Forwarding/Dropped",
    )

    def __init__(
        self,
        transport: Any,
        limit: int = 10000,
        app_name: Optional[str] = None,
        entity_guid: Optional[str] = None,
        hostname: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__("log_event_data", transport, limit=limit, **kwargs)
        self.app_name = app_name
        self.entity_guid = entity_guid
        self.hostname = hostname

    def add(self, log_line: Any, priority: Optional[float] = None) -> bool:
        if not isinstance(log_line, (EagerLogLine, LazyLogLine)):
            log_line = LazyLogLine(log_line) if callable(log_line) else EagerLogLine(log_line)
        return super().add(log_line, priority)

    def reconfigure(self, config) -> None:
        self.app_name = config.app_name
        self.entity_guid = config.entity_guid
        super().reconfigure(config)

    def common_attributes(self) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "entity.type": "SERVICE",
            "entity.name": self.app_name,
            "hostname": self.hostname,
        }
        if self.entity_guid:
            attributes["entity.guid"] = self.entity_guid
        if self._common_attributes is not None:
            attributes.update(self._common_attributes())
        return attributes

    def _format_entry(self, entry: Any) -> Any:
        value = entry.resolve() if isinstance(entry, (EagerLogLine, LazyLogLine)) else entry
        if not value:
            logger.debug("Log line resolved to nothing, skipping")
            return None
        # unserializable lines raise here and are dropped by to_payload
        json.dumps(value)
        return value
