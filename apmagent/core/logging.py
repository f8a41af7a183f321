"""
APM Agent Logging Setup

Configures structlog for the agent. Every module obtains its logger with
``structlog.get_logger(__name__)``; this module only decides the minimum
level and the renderer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import structlog

# "trace" shares the debug threshold; structlog has no lower level.
_LEVELS: Dict[str, int] = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def level_to_int(level: str) -> int:
    """Convert a configured level name to its numeric threshold."""
    return _LEVELS.get(str(level).lower(), logging.INFO)


def _add_component(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    """Tag agent records so they can be told apart from application logs."""
    event_dict.setdefault("component", "apmagent")
    return event_dict


def configure_logging(level: str = "info", json_output: bool = False) -> None:
    """Configure structlog with a filtering logger at ``level``."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _add_component,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_to_int(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
