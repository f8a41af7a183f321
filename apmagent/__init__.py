"""
apmagent - Application performance monitoring agent core

Collects telemetry inside an application process and ships it in periodic
harvests:
- Attribute filtering per destination (include/exclude rules)
- Priority-sampled event reservoirs for every event stream
- Transaction and tracer timing with exclusive-time metrics
- Coordinated harvest of every aggregator
"""

__version__ = "1.0.0"

from apmagent.agent import Agent
from apmagent.core.config import AgentConfig

__all__ = ["Agent", "AgentConfig", "__version__"]
