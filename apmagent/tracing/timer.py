"""Monotonic timer for transactions and tracers."""

from __future__ import annotations

import time
from typing import Optional


class Timer:
    """
    Measures one interval.

    Elapsed time comes from ``time.perf_counter``; the wall-clock start is
    kept separately for timestamps.
    """

    def __init__(self):
        self.start_epoch_ms: Optional[float] = None
        self._start: Optional[float] = None
        self._end: Optional[float] = None
        self._duration_ms: Optional[float] = None

    def begin(self) -> None:
        if self._start is not None:
            return
        self._start = time.perf_counter()
        self.start_epoch_ms = time.time() * 1000

    def end(self) -> None:
        if not self.is_running:
            return
        self._end = time.perf_counter()

    @property
    def is_active(self) -> bool:
        return self._start is not None

    @property
    def is_running(self) -> bool:
        return self._start is not None and self._end is None

    @property
    def started_at(self) -> Optional[float]:
        """perf_counter reading at begin, for offsets between timers."""
        return self._start

    def set_duration_ms(self, duration_ms: float) -> None:
        """Override the measured duration, ending the timer if still running."""
        self._duration_ms = duration_ms
        if self._end is None:
            self.end()

    def get_duration_ms(self) -> float:
        if self._duration_ms is not None:
            return self._duration_ms
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return (end - self._start) * 1000

    def offset_ms(self, origin: "Timer") -> float:
        """Milliseconds between ``origin`` beginning and this timer beginning."""
        if self._start is None or origin.started_at is None:
            return 0.0
        return (self._start - origin.started_at) * 1000
