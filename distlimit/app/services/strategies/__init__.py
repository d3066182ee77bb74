"""Rate limiting strategies.

The set of algorithms is closed: a rule's strategy is chosen once, when the
rule is loaded, through ``build_strategy``.
"""

from distlimit.app.services.rules.models import Algorithm, Rule
from distlimit.app.services.strategies.base import RateLimitStrategy, StoredState, Updater
from distlimit.app.services.strategies.fixed_window import FixedWindowStrategy
from distlimit.app.services.strategies.models import (
    BucketState,
    FixedWindowState,
    StrategyOutcome,
    WindowCounterState,
)
from distlimit.app.services.strategies.sliding_window import (
    SlidingWindowCounterStrategy,
    try_increment,
)
from distlimit.app.services.strategies.token_bucket import TokenBucketStrategy, try_consume

STRATEGIES: dict[Algorithm, type[RateLimitStrategy]] = {
    Algorithm.TOKEN_BUCKET: TokenBucketStrategy,
    Algorithm.SLIDING_WINDOW_COUNTER: SlidingWindowCounterStrategy,
    Algorithm.FIXED_WINDOW: FixedWindowStrategy,
}


def build_strategy(rule: Rule) -> RateLimitStrategy:
    """Create the strategy enforcing ``rule``."""
    return STRATEGIES[rule.algorithm](rule)


__all__ = [
    "BucketState",
    "FixedWindowState",
    "StrategyOutcome",
    "WindowCounterState",
    "RateLimitStrategy",
    "StoredState",
    "Updater",
    "TokenBucketStrategy",
    "SlidingWindowCounterStrategy",
    "FixedWindowStrategy",
    "STRATEGIES",
    "build_strategy",
    "try_consume",
    "try_increment",
]
