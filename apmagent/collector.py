"""
APM Agent Transports

Aggregators hand payloads to a transport with ``await transport.send(method,
payload)``. The transport answers with a ``SendResponse``; ``retain_data``
asks the aggregator to keep the data for the next harvest.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class SendResponse:
    retain_data: bool = False
    status: int = 200


class Transport(Protocol):
    async def send(self, method: str, payload: Any) -> SendResponse:
        ...


class ConsoleTransport:
    """
    Console transport for debugging.

    Prints every payload to stdout.
    """

    def __init__(self, format: str = "text"):
        self.format = format

    async def send(self, method: str, payload: Any) -> SendResponse:
        if self.format == "json":
            print(json.dumps({"method": method, "payload": payload}, default=str))
        else:
            print(f"[{method}] {payload!r}")
        return SendResponse()


class InMemoryTransport:
    """
    In-memory transport for testing.

    Stores payloads per method. ``responses`` and ``failures`` script the
    outcome for a method.
    """

    def __init__(self):
        self.sent: Dict[str, List[Any]] = {}
        self.responses: Dict[str, SendResponse] = {}
        self.failures: Dict[str, BaseException] = {}

    async def send(self, method: str, payload: Any) -> SendResponse:
        error = self.failures.get(method)
        if error is not None:
            raise error

        self.sent.setdefault(method, []).append(payload)
        return self.responses.get(method, SendResponse())

    def get_payloads(self, method: str) -> List[Any]:
        return list(self.sent.get(method, []))

    def last_payload(self, method: str) -> Optional[Any]:
        payloads = self.sent.get(method)
        return payloads[-1] if payloads else None

    def clear(self) -> None:
        self.sent.clear()
