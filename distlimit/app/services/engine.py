"""Decision engine: evaluates every applicable rule for a request.

Each rule is checked with one atomic store update. The request is admitted
only if every rule admits it; the reported metadata comes from the most
restrictive dimension that was evaluated. Increments already committed by
earlier dimensions are not rolled back when a later one denies: counters
record attempts, not admitted requests.
"""

import time
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from distlimit.app.api.metrics import MetricsCollector, get_metrics_collector
from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_log_context, get_logger
from distlimit.app.core.utils import now_seconds, to_millis
from distlimit.app.exceptions import ClockSkewDetected, StoreError
from distlimit.app.services.decision import Decision
from distlimit.app.services.failure_policy import FailurePolicy
from distlimit.app.services.keys import KeyResolver
from distlimit.app.services.rules import Rule, RuleRegistry, get_rule_registry
from distlimit.app.services.state_store import StateStore, get_state_store

logger = get_logger(__name__)


class DecisionEngine:
    """Combines per-dimension checks into one admit/deny decision.

    Holds no per-request mutable state: all coordination between requests,
    in this process or any other, goes through the state store.
    """

    def __init__(
        self,
        registry: Optional[RuleRegistry] = None,
        store: Optional[StateStore] = None,
        key_resolver: Optional[KeyResolver] = None,
        failure_policy: Optional[FailurePolicy] = None,
        metrics: Optional[MetricsCollector] = None,
        short_circuit: Optional[bool] = None,
        clock_skew_tolerance_ms: Optional[int] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Active rules, defaults to the global registry
            store: Shared state store, defaults to the global store
            key_resolver: Store key builder
            failure_policy: Handler for store failures
            metrics: Metrics collector, defaults to the global collector
            short_circuit: Stop at the first denying rule
            clock_skew_tolerance_ms: Backward clock jump tolerated silently
        """
        self.registry = registry or get_rule_registry()
        self.store = store if store is not None else get_state_store()
        self.key_resolver = key_resolver or KeyResolver()
        self._metrics = metrics
        self.failure_policy = failure_policy or FailurePolicy(metrics)
        self.short_circuit = settings.short_circuit if short_circuit is None else short_circuit
        self.clock_skew_tolerance_ms = (
            settings.clock_skew_tolerance_ms
            if clock_skew_tolerance_ms is None
            else clock_skew_tolerance_ms
        )

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics_collector()

    async def evaluate(
        self,
        dimensions: Mapping[str, str],
        cost: int = 1,
        now: Optional[float] = None,
    ) -> Decision:
        """Decide whether a request is admitted.

        Args:
            dimensions: Dimension name -> identifier (e.g. {"user_id": "u1"})
            cost: Events this request counts as
            now: Unix seconds, defaults to the current time

        Returns:
            Decision; store failures are folded in through the failure policy
        """
        if cost < 1:
            raise ValueError("cost must be at least 1")
        if now is None:
            now = now_seconds()
        now_ms = to_millis(now)

        rules = self.registry.resolve(dimensions)
        if not rules:
            return Decision.unrestricted(now)

        reported: Optional[Decision] = None
        allowed = True
        for rule in rules:
            result = await self._check(rule, dimensions, cost, now_ms)
            if reported is None or result.restrictiveness() < reported.restrictiveness():
                reported = result
            if not result.allowed:
                allowed = False
                if self.short_circuit:
                    break

        await self.metrics.record_decision(allowed)
        if not allowed:
            logger.debug(
                f"Request denied by {reported.rule_id}, retry in {reported.retry_after_ms}ms",
                extra=get_log_context(rule_id=reported.rule_id, dimension=reported.dimension),
            )
        return replace(reported, allowed=allowed)

    async def _check(
        self, rule: Rule, dimensions: Mapping[str, str], cost: int, now_ms: int
    ) -> Decision:
        """Run one rule's strategy against the store."""
        strategy = self.registry.strategy_for(rule)
        key = self.key_resolver.store_key(rule, dimensions, now_ms)
        started = time.perf_counter()
        try:
            outcome = await self.store.atomic_update(
                key, strategy.updater(cost * rule.cost, now_ms), strategy.ttl_ms
            )
        except StoreError as e:
            allowed = await self.failure_policy.on_store_failure(rule, e)
            return Decision.from_failure(rule, allowed, now_ms)

        await self.metrics.record_check(
            rule.dimension, outcome.allowed, time.perf_counter() - started
        )
        if outcome.skew_ms > self.clock_skew_tolerance_ms:
            skew = ClockSkewDetected(key, outcome.skew_ms, self.clock_skew_tolerance_ms)
            logger.warning(
                skew.message,
                extra=get_log_context(rule_id=rule.id, dimension=rule.dimension, rate_limit_key=key),
            )
            await self.metrics.record_clock_skew(rule.id)
        return Decision.from_outcome(rule, outcome)

    async def inspect(
        self, rule: Rule, dimensions: Mapping[str, str], now: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        """Stored state of ``rule`` for the identity in ``dimensions`` (diagnostics)."""
        now_ms = to_millis(now)
        return await self.store.get(self.key_resolver.store_key(rule, dimensions, now_ms))

    async def reset(self, dimensions: Mapping[str, str], now: Optional[float] = None) -> int:
        """Delete the stored state of every rule applicable to ``dimensions``.

        Returns:
            Number of rules reset
        """
        now_ms = to_millis(now)
        rules = self.registry.resolve(dimensions)
        for rule in rules:
            await self.store.delete(self.key_resolver.store_key(rule, dimensions, now_ms))
        logger.info(f"Reset {len(rules)} rate limit keys")
        return len(rules)


_decision_engine: Optional[DecisionEngine] = None


def get_decision_engine() -> DecisionEngine:
    """Get the global decision engine instance."""
    global _decision_engine
    if _decision_engine is None:
        _decision_engine = DecisionEngine()
    return _decision_engine


def reset_decision_engine() -> None:
    """Reset the global decision engine instance."""
    global _decision_engine
    _decision_engine = None
