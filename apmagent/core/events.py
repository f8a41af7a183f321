"""
APM Agent Event Subscriptions

Minimal synchronous publish/subscribe used by configuration, aggregators and
transactions to announce state changes.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[..., Any]


class EventSource:
    """Mixin providing named-event subscriptions."""

    def _handlers_for(self, event_type: str) -> List[EventHandler]:
        handlers: Dict[str, List[EventHandler]] = self.__dict__.setdefault("_event_handlers", {})
        return handlers.setdefault(event_type, [])

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type."""
        self._handlers_for(event_type).append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """Unsubscribe a handler from an event type."""
        handlers = self._handlers_for(event_type)
        if handler in handlers:
            handlers.remove(handler)

    def once(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler that is removed after its first call."""

        def _once(*args: Any) -> Any:
            self.unsubscribe(event_type, _once)
            return handler(*args)

        self.subscribe(event_type, _once)

    def listener_count(self, event_type: str) -> int:
        return len(self._handlers_for(event_type))

    def _emit(self, event_type: str, *args: Any) -> None:
        """Dispatch an event to its handlers in subscription order."""
        for handler in list(self._handlers_for(event_type)):
            try:
                handler(*args)
            except Exception as e:
                logger.error(
                    "Event handler error",
                    event_type=event_type,
                    error=str(e),
                )
