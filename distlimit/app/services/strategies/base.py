"""
Abstract base class for rate limiting strategies.

A strategy is pure decision logic: given the prior stored state of a key
(or None for a fresh key) and the current time, it returns the new state
to persist and the outcome. It never talks to the store itself; the engine
hands ``updater()`` to the store's atomic update.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from distlimit.app.core.logging import get_log_context, get_logger
from distlimit.app.services.rules.models import Algorithm, Rule
from distlimit.app.services.strategies.models import StrategyOutcome

logger = get_logger(__name__)

S = TypeVar("S")

StoredState = Optional[Dict[str, Any]]
Updater = Callable[[StoredState], Tuple[Dict[str, Any], StrategyOutcome]]


class RateLimitStrategy(ABC):
    """Strategy bound to a single rule."""

    algorithm: Algorithm

    def __init__(self, rule: Rule) -> None:
        if rule.algorithm is not self.algorithm:
            raise ValueError(
                f"{type(self).__name__} cannot enforce a {rule.algorithm.value} rule"
            )
        self.rule = rule

    @abstractmethod
    def apply(
        self, prior: StoredState, cost: int, now_ms: int
    ) -> Tuple[Dict[str, Any], StrategyOutcome]:
        """Compute the new state and the outcome.

        Args:
            prior: Stored state dict, or None when the key is fresh
            cost: Units to consume for this request
            now_ms: Current time, unix milliseconds

        Returns:
            Tuple of (state dict to persist, outcome)
        """

    def load_state(self, prior: StoredState, state_type: Type[S]) -> Optional[S]:
        """Parse stored state, or None when there is none or it has another shape.

        Unparseable state is logged and replaced with fresh state.
        """
        if prior is None:
            return None
        try:
            return state_type.from_dict(prior)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning(
                f"Discarding unreadable {state_type.__name__} state",
                extra=get_log_context(rule_id=self.rule.id, dimension=self.rule.dimension),
            )
            return None

    def updater(self, cost: int, now_ms: int) -> Updater:
        """Bind request arguments for the store's atomic update."""
        def _update(prior: StoredState) -> Tuple[Dict[str, Any], StrategyOutcome]:
            return self.apply(prior, cost, now_ms)
        return _update

    @property
    def ttl_ms(self) -> int:
        return self.rule.ttl_ms
