"""
APM Agent

Central coordinator wiring configuration, attribute filtering, aggregators
and the harvester together, and the entry points instrumentation calls into.
"""

from __future__ import annotations

import random
import re
import time
from typing import Any, Callable, Dict, Optional

import structlog

from apmagent.aggregators import (
    CustomEventAggregator,
    ErrorEventAggregator,
    LogAggregator,
    MetricAggregator,
    SpanEventAggregator,
    TraceAggregator,
    TransactionEventAggregator,
)
from apmagent.attributes import AttributeFilter, Attributes
from apmagent.collector import ConsoleTransport
from apmagent.core.config import AgentConfig
from apmagent.harvest import Harvester
from apmagent.metadata import ProcessMetadata
from apmagent.metrics import TxSegmentNormalizer
from apmagent.tracing import Trace, Tracer, Transaction, get_current_tracer
from apmagent.types import Destination, TransactionType

logger = structlog.get_logger(__name__)

_CUSTOM_EVENT_TYPE = re.compile(r"^[a-zA-Z0-9:_ ]+$")
MAX_CUSTOM_EVENT_TYPE_LENGTH = 255


class Agent:
    """
    Owns every harvest component for one application.

    Args:
        config: Agent configuration; defaults are loaded from the environment.
        transport: Payload sink; defaults to printing to stdout.
    """

    def __init__(self, config: Optional[AgentConfig] = None, transport: Any = None):
        self.config = config or AgentConfig()
        self.transport = transport or ConsoleTransport()
        self.metadata = ProcessMetadata()

        self.attribute_filter = AttributeFilter(self.config)
        self.normalizer = TxSegmentNormalizer()
        self.normalizer.load(self.config.transaction_segment_terms)

        self.metric_aggregator = MetricAggregator(**self._aggregator_kwargs("metric_data"))
        self.transaction_events = TransactionEventAggregator(
            metrics=self.metric_aggregator,
            **self._aggregator_kwargs("analytic_event_data"),
        )
        self.custom_events = CustomEventAggregator(
            metrics=self.metric_aggregator,
            **self._aggregator_kwargs("custom_event_data"),
        )
        self.error_events = ErrorEventAggregator(
            metrics=self.metric_aggregator,
            **self._aggregator_kwargs("error_event_data"),
        )
        self.span_events = SpanEventAggregator(
            metrics=self.metric_aggregator,
            **self._aggregator_kwargs("span_event_data"),
        )
        self.log_events = LogAggregator(
            metrics=self.metric_aggregator,
            app_name=self.config.app_name,
            entity_guid=self.config.entity_guid,
            hostname=self.metadata.hostname,
            **self._aggregator_kwargs("log_event_data"),
        )
        self.traces = TraceAggregator(
            threshold_ms=self.config.transaction_tracer.threshold_ms,
            **self._aggregator_kwargs("transaction_sample_data"),
        )

        self.harvester = Harvester()
        for aggregator in (
            self.metric_aggregator,
            self.transaction_events,
            self.custom_events,
            self.error_events,
            self.span_events,
            self.log_events,
            self.traces,
        ):
            self.harvester.add(aggregator)

        self.config.subscribe("transaction_segment_terms", self._on_segment_terms)
        self.config.subscribe("change", self._on_config_change)

        self._started = False
        self._start_time = time.time()

    def _aggregator_kwargs(self, method: str) -> Dict[str, Any]:
        settings = self.config.get_aggregator_config(method)
        return {
            "transport": self.transport,
            "run_id": self.config.run_id,
            "period_ms": settings.period_ms,
            "limit": settings.limit,
            "enabled": settings.enabled,
        }

    # === Lifecycle ===

    def start(self) -> None:
        """Start harvesting."""
        if self._started:
            return

        logger.info(
            "Starting APM agent",
            app_name=self.config.app_name,
            pid=self.metadata.pid,
        )
        self.harvester.start()
        self._started = True

    async def stop(self) -> None:
        """Flush everything once more, then stop harvesting."""
        if not self._started:
            return

        logger.info("Stopping APM agent")
        await self.harvester.clear()
        self.harvester.stop()
        self._started = False

    async def harvest(self, callback: Optional[Callable[[], Any]] = None) -> None:
        """Send every aggregator now."""
        await self.harvester.clear(callback)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    # === Configuration Changes ===

    def _on_segment_terms(self, terms: Any) -> None:
        self.normalizer.load(terms)

    def _on_config_change(self, config: AgentConfig) -> None:
        self.harvester.update(config)

    # === Transactions ===

    def start_transaction(
        self,
        name: Optional[str] = None,
        url: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.WEB,
    ) -> Transaction:
        """Create a transaction with its root tracer already running."""
        transaction = Transaction(
            name=name,
            url=url,
            transaction_type=transaction_type,
            attribute_filter=self.attribute_filter,
            normalizer=self.normalizer,
        )
        transaction.subscribe(Transaction.FINISHED_EVENT, self._on_transaction_finished)
        Tracer(transaction, "ROOT")
        return transaction

    def _on_transaction_finished(self, transaction: Transaction) -> None:
        self.metric_aggregator.merge(transaction.metrics)
        self.transaction_events.add(transaction.to_event(), transaction.priority)

        for tracer in transaction.tracers:
            self.span_events.add(tracer.to_span_event(), transaction.priority)

        self.traces.add(Trace(transaction))

    # === Events ===

    def record_custom_event(self, event_type: str, attributes: Dict[str, Any]) -> bool:
        """Queue a custom event. Returns True if it was kept."""
        if (
            not isinstance(event_type, str)
            or len(event_type) > MAX_CUSTOM_EVENT_TYPE_LENGTH
            or not _CUSTOM_EVENT_TYPE.match(event_type)
        ):
            logger.error("Invalid custom event type, event dropped", event_type=str(event_type)[:64])
            return False
        if not isinstance(attributes, dict):
            logger.error(
                "Custom event attributes must be a dict, event dropped",
                event_type=event_type,
            )
            return False

        user_attributes = Attributes("custom_event")
        user_attributes.add_attributes(Destination.TRANS_EVENT, attributes)
        intrinsics = {"type": event_type, "timestamp": time.time() * 1000}
        return self.custom_events.add(
            [intrinsics, user_attributes.get(Destination.TRANS_EVENT)],
            random.random(),
        )

    def record_log_event(self, line: Any, priority: Optional[float] = None) -> bool:
        """
        Queue a log line for forwarding.

        ``line`` is either a dict or a zero-argument callable producing one.
        Dict lines logged inside a transaction are linked to it.
        """
        tracer = get_current_tracer()
        if tracer is not None and priority is None:
            priority = tracer.transaction.priority

        if isinstance(line, dict):
            linked: Dict[str, Any] = {"timestamp": time.time() * 1000}
            if tracer is not None:
                linked["trace.id"] = tracer.transaction.trace_id
                linked["span.id"] = tracer.id
            line = {**linked, **line}
        return self.log_events.add(line, priority)

    def notice_error(
        self,
        error: Any,
        transaction: Optional[Transaction] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Record an error event, linked to the current transaction if any."""
        if transaction is None:
            tracer = get_current_tracer()
            transaction = tracer.transaction if tracer is not None else None

        if isinstance(error, BaseException):
            error_class, message = type(error).__name__, str(error)
        else:
            error_class, message = "Error", str(error)

        intrinsics: Dict[str, Any] = {
            "type": "TransactionError",
            "error.class": error_class,
            "error.message": message,
            "timestamp": time.time() * 1000,
        }
        agent_attributes: Dict[str, Any] = {}
        priority = random.random()

        if transaction is not None:
            intrinsics["transactionName"] = transaction.full_name or transaction.get_full_name()
            intrinsics["guid"] = transaction.id
            intrinsics["traceId"] = transaction.trace_id
            agent_attributes = transaction.attributes.get(Destination.ERROR_EVENT)
            priority = transaction.priority

        user_attributes = Attributes(
            "error",
            filter_fn=self.attribute_filter.filter_transaction,
        )
        user_attributes.add_attributes(Destination.ERROR_EVENT, attributes or {})

        self.metric_aggregator.get_or_create_metric("Errors/all").increment_call_count()
        return self.error_events.add(
            [intrinsics, user_attributes.get(Destination.ERROR_EVENT), agent_attributes],
            priority,
        )

    def record_supportability(self, name: str, value: Optional[float] = None) -> None:
        """Record an agent health metric under ``Supportability/``."""
        stats = self.metric_aggregator.get_or_create_metric(f"Supportability/{name}")
        if value is None:
            stats.increment_call_count()
        else:
            stats.record_value(value)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "app_name": self.config.app_name,
            "started": self._started,
            "uptime_seconds": self.uptime_seconds,
            "aggregators": {
                aggregator.method: {
                    "enabled": aggregator.enabled,
                    "started": aggregator.started,
                    "size": len(aggregator) if hasattr(aggregator, "__len__") else None,
                }
                for aggregator in self.harvester.aggregators
            },
        }
