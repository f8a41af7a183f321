import pytest


@pytest.fixture(autouse=True)
def reset_current_tracer():
    """Start every test without an active tracer."""
    from apmagent.tracing.tracer import _current_tracer

    _current_tracer.set(None)
    yield
    _current_tracer.set(None)
