"""Shared fixtures for the rate limiter tests."""

import pytest

from distlimit.app.api.metrics import MetricsCollector, reset_metrics_collector
from distlimit.app.services.engine import DecisionEngine, reset_decision_engine
from distlimit.app.services.rules import RuleRegistry, reset_rule_registry
from distlimit.app.services.state_store import InMemoryStateStore, reset_state_store


class FakeClock:
    """Controllable time source returning unix seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global state before each test."""
    reset_metrics_collector()
    reset_decision_engine()
    reset_rule_registry()
    reset_state_store()
    yield
    reset_metrics_collector()
    reset_decision_engine()
    reset_rule_registry()
    reset_state_store()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    # Generous budget: the tests check logic, not latency
    return InMemoryStateStore(clock=clock, timeout_ms=1000)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def make_engine(store, metrics):
    """Build an engine over the shared store for a list of rule dicts."""

    def _make(rules, **kwargs):
        kwargs.setdefault("store", store)
        kwargs.setdefault("metrics", metrics)
        return DecisionEngine(registry=RuleRegistry(rules), **kwargs)

    return _make
