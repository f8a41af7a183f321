"""apmagent core - configuration, logging and event subscriptions."""

from apmagent.core.config import AgentConfig, AggregatorSettings
from apmagent.core.events import EventSource
from apmagent.core.logging import configure_logging, level_to_int

__all__ = [
    "AgentConfig",
    "AggregatorSettings",
    "EventSource",
    "configure_logging",
    "level_to_int",
]
