"""
APM Agent Attribute Container

Holds attributes for one scope (transaction or segment) together with the
destinations each attribute is allowed to reach.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import structlog

from apmagent.types import Destination

logger = structlog.get_logger(__name__)

MAX_KEY_BYTES = 255

# (destinations, key) -> allowed destinations
DestinationFilter = Callable[[Destination, str], Destination]


@dataclass
class _Attribute:
    value: Any
    destinations: Destination


class Attributes:
    """
    Attribute storage with per-key destination routing.

    Args:
        scope: "transaction" or "segment", used for diagnostics.
        filter_fn: Applies attribute rules; None keeps requested destinations.
        limit: Maximum number of attributes kept.
        value_limit: Maximum length of string values.
    """

    def __init__(
        self,
        scope: str,
        filter_fn: Optional[DestinationFilter] = None,
        limit: int = 64,
        value_limit: int = 255,
    ):
        self.scope = scope
        self.filter_fn = filter_fn
        self.limit = limit
        self.value_limit = value_limit
        self._attributes: Dict[str, _Attribute] = {}

    def __len__(self) -> int:
        return len(self._attributes)

    def has(self, key: str) -> bool:
        return key in self._attributes

    def reset(self) -> None:
        self._attributes = {}

    def add_attribute(
        self,
        destinations: Destination,
        key: str,
        value: Any,
        truncate_exempt: bool = False,
    ) -> bool:
        """Add one attribute. Returns True if it was stored."""
        if len(key.encode("utf-8")) > MAX_KEY_BYTES:
            logger.debug(
                "Attribute key exceeds size limit, dropping",
                scope=self.scope,
                key=key[:32],
            )
            return False

        if key not in self._attributes and len(self._attributes) >= self.limit:
            logger.debug(
                "Attribute limit reached, dropping",
                scope=self.scope,
                key=key,
                limit=self.limit,
            )
            return False

        if self.filter_fn is not None:
            destinations = self.filter_fn(Destination(destinations), key)
        if not destinations:
            # rejected overwrite drops the previous value
            self._attributes.pop(key, None)
            return False

        if isinstance(value, str) and not truncate_exempt and len(value) > self.value_limit:
            value = value[:self.value_limit]

        self._attributes[key] = _Attribute(value=value, destinations=Destination(destinations))
        return True

    def add_attributes(self, destinations: Destination, attributes: Mapping[str, Any]) -> None:
        for key, value in attributes.items():
            self.add_attribute(destinations, key, value)

    def get(self, destination: Destination) -> Dict[str, Any]:
        """Attributes routed to ``destination``."""
        return {
            key: attr.value
            for key, attr in self._attributes.items()
            if attr.destinations & destination
        }
