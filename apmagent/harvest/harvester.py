"""
APM Agent Harvester

Coordinates the aggregators: staggered start, coordinated flush, stop and
reconfiguration.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional, Set

import structlog

from apmagent.aggregators.base import Aggregator

logger = structlog.get_logger(__name__)


class Harvester:
    """Drives a set of aggregators as one unit."""

    def __init__(self):
        self.aggregators: List[Aggregator] = []
        self.started = False
        self._timers: List[asyncio.TimerHandle] = []
        self._delayed: Set[str] = set()
        self._expired: Set[str] = set()

    def add(self, aggregator: Aggregator) -> None:
        self.aggregators.append(aggregator)

    def start(self) -> None:
        """Start every enabled aggregator, honouring its delay and duration."""
        if self.started:
            return
        self.started = True

        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for aggregator in self.aggregators:
            if not aggregator.enabled:
                continue

            delay = aggregator.delay or 0
            duration = aggregator.duration or 0

            if (delay > 0 or duration > 0) and loop is None:
                logger.warning(
                    "No running event loop, starting without delay",
                    method=aggregator.method,
                )
                aggregator.start()
                continue

            if delay > 0:
                self._delayed.add(aggregator.method)
                self._timers.append(loop.call_later(delay / 1000, self._delayed_start, aggregator))
            else:
                aggregator.start()

            if duration > 0:
                self._timers.append(loop.call_later((delay + duration) / 1000, self._expire, aggregator))

        logger.debug("Harvester started", aggregator_count=len(self.aggregators))

    def _delayed_start(self, aggregator: Aggregator) -> None:
        self._delayed.discard(aggregator.method)
        if aggregator.enabled:
            aggregator.start()

    def _expire(self, aggregator: Aggregator) -> None:
        self._expired.add(aggregator.method)
        aggregator.stop()

    def stop(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self._delayed.clear()
        self._expired.clear()

        for aggregator in self.aggregators:
            aggregator.stop()
        self.started = False

    def update(self, config: Any) -> None:
        """Reconfigure every aggregator and start the ones that became enabled."""
        for aggregator in self.aggregators:
            aggregator.reconfigure(config)
            if (
                self.started
                and aggregator.enabled
                and not aggregator.started
                and aggregator.method not in self._delayed
                and aggregator.method not in self._expired
            ):
                logger.debug("Aggregator enabled, starting", method=aggregator.method)
                aggregator.start()

    async def clear(self, callback: Optional[Callable[[], Any]] = None) -> None:
        """
        Send every enabled aggregator and wait for each to finish.

        ``callback`` is scheduled once on the loop after all sends settled.
        """
        loop = asyncio.get_running_loop()
        waits = [self._send_and_wait(aggregator, loop) for aggregator in self.aggregators]
        results = await asyncio.gather(*waits, return_exceptions=True)

        failed = [r for r in results if r is not None]
        if failed:
            logger.debug("Harvest finished with send errors", error_count=len(failed))

        if callback is not None:
            loop.call_soon(callback)

    def _send_and_wait(self, aggregator: Aggregator, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
        done = loop.create_future()
        if not aggregator.enabled:
            done.set_result(None)
            return done

        def _finished(error: Optional[BaseException] = None) -> None:
            if not done.done():
                done.set_result(error)

        aggregator.once(aggregator.finished_event, _finished)
        try:
            aggregator.send()
        except Exception as e:
            logger.error("Aggregator send failed", method=aggregator.method, error=str(e))
            _finished(e)
        return done
