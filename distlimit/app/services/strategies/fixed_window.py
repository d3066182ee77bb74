"""Fixed window counter strategy.

The window index is part of the store key, so every window starts from a
fresh counter and old windows simply expire. A burst at the end of one
window followed by one at the start of the next can admit up to 2x the
limit; use the sliding window counter where that matters.
"""

from typing import Any, Dict, Tuple

from distlimit.app.core.utils import window_index
from distlimit.app.services.rules.models import Algorithm
from distlimit.app.services.strategies.base import RateLimitStrategy, StoredState
from distlimit.app.services.strategies.models import FixedWindowState, StrategyOutcome


class FixedWindowStrategy(RateLimitStrategy):
    """Plain counter per (key, window).

    Clock skew is only visible within one window: a timestamp that falls
    into an earlier window maps to a different key and finds no state.
    """

    algorithm = Algorithm.FIXED_WINDOW

    def apply(
        self, prior: StoredState, cost: int, now_ms: int
    ) -> Tuple[Dict[str, Any], StrategyOutcome]:
        rule = self.rule
        start = window_index(now_ms, rule.window_ms) * rule.window_ms
        state = self.load_state(prior, FixedWindowState)
        if state is None or state.window_start_ms != start:
            state = FixedWindowState(window_start_ms=start, last_seen_ms=now_ms)

        skew_ms = max(0, state.last_seen_ms - now_ms)
        state.last_seen_ms = max(state.last_seen_ms, now_ms)

        reset_at_ms = start + rule.window_ms
        if state.count + cost <= rule.limit:
            state.count += cost
            outcome = StrategyOutcome(
                allowed=True,
                limit=rule.limit,
                remaining=rule.limit - state.count,
                reset_at_ms=reset_at_ms,
                skew_ms=skew_ms,
            )
        else:
            outcome = StrategyOutcome(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                reset_at_ms=reset_at_ms,
                retry_after_ms=reset_at_ms - now_ms,
                skew_ms=skew_ms,
            )
        return state.to_dict(), outcome
