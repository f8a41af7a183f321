"""
APM Agent Process Metadata

Host and process facts attached to payloads. Values are looked up once and
memoized on the instance; ``clear_cache`` forces a fresh lookup (for example
after a fork).
"""

from __future__ import annotations

import os
import socket
from typing import Any, Dict, Optional

import psutil
import structlog

logger = structlog.get_logger(__name__)


class ProcessMetadata:
    def __init__(self):
        self._hostname: Optional[str] = None
        self._pid: Optional[int] = None
        self._start_time: Optional[float] = None

    @property
    def hostname(self) -> str:
        if self._hostname is None:
            self._hostname = socket.gethostname()
        return self._hostname

    @property
    def pid(self) -> int:
        if self._pid is None:
            self._pid = os.getpid()
        return self._pid

    @property
    def start_time(self) -> Optional[float]:
        """Process creation time in epoch seconds, None if unavailable."""
        if self._start_time is None:
            try:
                self._start_time = psutil.Process(self.pid).create_time()
            except psutil.Error as e:
                logger.debug("Process start time unavailable", error=str(e))
                return None
        return self._start_time

    def clear_cache(self) -> None:
        self._hostname = None
        self._pid = None
        self._start_time = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "pid": self.pid,
            "start_time": self.start_time,
        }
