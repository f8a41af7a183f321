"""
APM Agent Aggregator Base

An aggregator owns the data for one collector method. It periodically
snapshots that data, clears itself, hands the payload to the transport and,
if the transport asks for it (or fails), folds the snapshot back in.

Every send announces itself with two events:

    starting_data_send-{method}
    finished_data_send-{method}   handler(error_or_none)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Set

import structlog

from apmagent.core.events import EventSource

logger = structlog.get_logger(__name__)


class Aggregator(EventSource, ABC):
    """
    Base class for harvestable data stores.

    Args:
        method: Collector endpoint name, e.g. ``analytic_event_data``.
        transport: Object with ``async send(method, payload)``.
        period_ms: Interval between periodic sends.
        limit: Stream-specific capacity.
        run_id: Collector run identifier.
        enabled: Whether the harvester should drive this aggregator.
        delay: Milliseconds the harvester waits before starting it.
        duration: Milliseconds after the start at which it is stopped, 0 for never.
    """

    def __init__(
        self,
        method: str,
        transport: Any,
        period_ms: float = 60000,
        limit: int = 0,
        run_id: Optional[str] = None,
        enabled: bool = True,
        delay: float = 0,
        duration: float = 0,
    ):
        if not method:
            raise ValueError("Aggregator requires a method name")
        if transport is None:
            raise ValueError(f"Aggregator {method} requires a transport")

        self.method = method
        self.transport = transport
        self.period_ms = period_ms
        self.limit = limit
        self.run_id = run_id
        self.delay = delay
        self.duration = duration
        self._enabled = enabled

        self.started = False
        self._send_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @property
    def starting_event(self) -> str:
        return f"starting_data_send-{self.method}"

    @property
    def finished_event(self) -> str:
        return f"finished_data_send-{self.method}"

    # === Lifecycle ===

    def start(self) -> None:
        """Begin accepting data and schedule periodic sends."""
        self.started = True
        if self._send_task is not None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, periodic send disabled", method=self.method)
            return

        self._send_task = loop.create_task(self._send_loop())
        logger.debug("Aggregator started", method=self.method, period_ms=self.period_ms)

    def stop(self) -> None:
        """Stop periodic sends. Collected data is kept."""
        self.started = False
        if self._send_task is not None:
            self._send_task.cancel()
            self._send_task = None
            logger.debug("Aggregator stopped", method=self.method)

    async def _send_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.period_ms / 1000)
                self.send()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Periodic send failed", method=self.method, error=str(e))

    def reconfigure(self, config) -> None:
        """Pick up run id, period, limit and enabled state from ``config``."""
        settings = config.get_aggregator_config(self.method)
        self.run_id = config.run_id
        self.enabled = settings.enabled

        if settings.period_ms != self.period_ms:
            self.period_ms = settings.period_ms
            if self._send_task is not None:
                self._send_task.cancel()
                self._send_task = None
                self.start()

        self.set_limit(settings.limit)

    def set_limit(self, limit: int) -> None:
        self.limit = limit

    # === Sending ===

    def send(self) -> Optional[asyncio.Task]:
        """
        Snapshot, clear and transmit the current data.

        Returns the task performing the transmission, or None when there was
        nothing to send. ``finished_data_send-{method}`` fires in every case.
        """
        self._emit(self.starting_event)

        merge_data = self._get_merge_data()
        try:
            payload = self.to_payload()
        except Exception as e:
            logger.error("Failed to build payload, data dropped", method=self.method, error=str(e))
            payload = None
        self.clear()

        if not payload:
            self._emit(self.finished_event, None)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            logger.error("Cannot send without a running event loop", method=self.method)
            self._merge(merge_data)
            self._emit(self.finished_event, e)
            return None

        task = loop.create_task(self._run_send(merge_data, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_send(self, merge_data: Any, payload: Any) -> None:
        error: Optional[BaseException] = None
        try:
            response = await self.transport.send(self.method, payload)
        except asyncio.CancelledError as e:
            logger.warning("Data send cancelled, retaining data", method=self.method)
            self._merge(merge_data)
            self._emit(self.finished_event, e)
            raise
        except Exception as e:
            error = e
            logger.warning("Data send failed, retaining data", method=self.method, error=str(e))
            self._merge(merge_data)
        else:
            if response is not None and getattr(response, "retain_data", False):
                logger.debug("Collector requested data retention", method=self.method)
                self._merge(merge_data)

        self._emit(self.finished_event, error)

    # === Stream-specific hooks ===

    @abstractmethod
    def to_payload(self) -> Any:
        """Collector payload for the current data, or None if there is nothing to send."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all current data."""

    @abstractmethod
    def _get_merge_data(self) -> Any:
        """Snapshot that ``_merge`` can fold back in after ``clear``."""

    @abstractmethod
    def _merge(self, data: Any) -> None:
        """Fold a snapshot back into the current data."""
