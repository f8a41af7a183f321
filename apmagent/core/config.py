"""
APM Agent Configuration

Type-safe agent settings with:
- Environment-based loading (APMAGENT_ prefix, __ for nesting)
- Validation on every assignment
- Change notifications per dotted key, so subsystems can rebuild state
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)


class _Section(BaseModel):
    """Base for configuration sections; assignments are validated."""
    model_config = ConfigDict(validate_assignment=True)


class AttributeRules(_Section):
    """Include/exclude rules for one attribute destination."""
    enabled: bool = True
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class GlobalAttributes(AttributeRules):
    """Agent-wide attribute rules."""
    include_enabled: bool = True
    filter_cache_limit: int = Field(default=1000, ge=0)


class DestinationSection(_Section):
    """A telemetry destination that carries attributes."""
    enabled: bool = True
    attributes: AttributeRules = Field(default_factory=AttributeRules)


class EventStreamSection(DestinationSection):
    """A destination backed by a bounded event reservoir."""
    max_samples_stored: int = 10000


class TransactionTracerSection(DestinationSection):
    """Transaction trace capture settings."""
    threshold_ms: float = Field(default=500.0, ge=0)


class ForwardingSection(_Section):
    """Application log forwarding."""
    enabled: bool = True
    max_samples_stored: int = 10000


class ApplicationLoggingSection(_Section):
    enabled: bool = True
    forwarding: ForwardingSection = Field(default_factory=ForwardingSection)


class EventHarvestConfig(_Section):
    """Server-side harvest overrides (per-method limits and period)."""
    report_period_ms: int = Field(default=60000, gt=0)
    harvest_limits: Dict[str, int] = Field(default_factory=dict)


@dataclass
class AggregatorSettings:
    """Resolved settings for one aggregator method."""
    period_ms: float
    limit: int
    enabled: bool


# method -> (section path, limit attribute or fixed limit)
_AGGREGATOR_SECTIONS: Dict[str, Tuple[str, Any]] = {
    "analytic_event_data": ("transaction_events", "max_samples_stored"),
    "custom_event_data": ("custom_insights_events", "max_samples_stored"),
    "error_event_data": ("error_collector", "max_samples_stored"),
    "span_event_data": ("span_events", "max_samples_stored"),
    "log_event_data": ("application_logging.forwarding", "max_samples_stored"),
    "transaction_sample_data": ("transaction_tracer", 1),
    "metric_data": ("", 0),
}


class AgentConfig(BaseSettings):
    """
    Main agent configuration.

    Loads from environment variables prefixed with APMAGENT_
    (e.g. APMAGENT_ATTRIBUTES__ENABLED=false) and/or a JSON file.
    """

    app_name: str = "My Application"
    run_id: Optional[str] = None
    entity_guid: Optional[str] = None
    log_level: str = "info"

    # Harvest cycle, seconds
    data_report_period: float = Field(default=60.0, gt=0)
    event_harvest_config: Optional[EventHarvestConfig] = None

    attributes: GlobalAttributes = Field(default_factory=GlobalAttributes)

    transaction_events: EventStreamSection = Field(
        default_factory=lambda: EventStreamSection(max_samples_stored=10000)
    )
    transaction_tracer: TransactionTracerSection = Field(default_factory=TransactionTracerSection)
    error_collector: EventStreamSection = Field(
        default_factory=lambda: EventStreamSection(max_samples_stored=100)
    )
    browser_monitoring: DestinationSection = Field(
        default_factory=lambda: DestinationSection(
            enabled=False, attributes=AttributeRules(enabled=False)
        )
    )
    span_events: EventStreamSection = Field(
        default_factory=lambda: EventStreamSection(max_samples_stored=2000)
    )
    transaction_segments: DestinationSection = Field(default_factory=DestinationSection)
    custom_insights_events: EventStreamSection = Field(
        default_factory=lambda: EventStreamSection(max_samples_stored=3000)
    )
    application_logging: ApplicationLoggingSection = Field(default_factory=ApplicationLoggingSection)

    transaction_segment_terms: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {
        "env_prefix": "APMAGENT_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "validate_assignment": True,
    }

    _handlers: Dict[str, List[Callable[..., Any]]] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_file(cls, config_path: Path) -> "AgentConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    # === Change Notifications ===

    def subscribe(self, key: str, handler: Callable[..., Any]) -> None:
        """Call ``handler(new_value)`` whenever ``key`` changes.

        The special key ``change`` is notified once per update with the
        whole configuration.
        """
        self._handlers.setdefault(key, []).append(handler)

    def unsubscribe(self, key: str, handler: Callable[..., Any]) -> None:
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, key: str, value: Any) -> None:
        for handler in list(self._handlers.get(key, [])):
            try:
                handler(value)
            except Exception as e:
                logger.error("Configuration listener failed", key=key, error=str(e))

    def get(self, key: str) -> Any:
        """Look up a dotted key, e.g. ``span_events.attributes.include``."""
        value: Any = self
        for part in key.split("."):
            if not isinstance(value, BaseModel) or part not in type(value).model_fields:
                raise KeyError(key)
            value = getattr(value, part)
        return value

    def update(self, values: Dict[str, Any]) -> List[str]:
        """
        Apply new values and notify listeners.

        Keys are dotted paths; nested dictionaries addressing a section are
        flattened. Invalid values are logged and the prior value retained.

        Returns:
            The keys whose value actually changed.
        """
        changed: List[str] = []

        for key, value in self._flatten(values):
            owner_key, _, attr = key.rpartition(".")
            try:
                owner = self.get(owner_key) if owner_key else self
            except KeyError:
                owner = None
            if not isinstance(owner, BaseModel) or attr not in type(owner).model_fields:
                logger.warning("Unknown configuration key ignored", key=key)
                continue

            previous = getattr(owner, attr)
            try:
                setattr(owner, attr, value)
            except ValidationError as e:
                logger.warning(
                    "Invalid configuration value ignored",
                    key=key,
                    value_type=type(value).__name__,
                    error=str(e),
                )
                continue

            if getattr(owner, attr) != previous:
                changed.append(key)

        for key in changed:
            self._emit(key, self.get(key))
        if changed:
            self._emit("change", self)

        return changed

    def _flatten(self, values: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
        for key, value in values.items():
            path = f"{prefix}{key}"
            if isinstance(value, dict):
                try:
                    target = self.get(path)
                except KeyError:
                    target = None
                if isinstance(target, BaseModel):
                    yield from self._flatten(value, f"{path}.")
                    continue
            yield path, value

    # === Aggregator Settings ===

    def get_aggregator_config(self, method: str) -> AggregatorSettings:
        """Resolve period, limit and enabled state for an aggregator method."""
        period_ms = self.data_report_period * 1000
        section_path, limit_source = _AGGREGATOR_SECTIONS.get(method, ("", 0))

        enabled = True
        limit = limit_source if isinstance(limit_source, int) else 0
        if section_path:
            section = self.get(section_path)
            enabled = bool(getattr(section, "enabled", True))
            if isinstance(limit_source, str):
                limit = getattr(section, limit_source)

        if method == "log_event_data":
            enabled = enabled and self.application_logging.enabled

        harvest = self.event_harvest_config
        if harvest is not None and method in harvest.harvest_limits:
            period_ms = harvest.report_period_ms
            limit = harvest.harvest_limits[method]

        return AggregatorSettings(period_ms=period_ms, limit=limit, enabled=enabled)
