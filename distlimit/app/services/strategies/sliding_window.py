"""Sliding window counter strategy.

Approximates a sliding log with two counters: the exact count of the
current window plus the previous window's count weighted by how much of it
still overlaps the sliding window. Avoids the 2x burst a naive fixed window
allows across a boundary. Worst-case overshoot is bounded by the rounding
of ``previous_count * elapsed_fraction``.
"""

import math
from typing import Any, Dict, Optional, Tuple

from distlimit.app.core.utils import window_index
from distlimit.app.services.rules.models import Algorithm
from distlimit.app.services.strategies.base import RateLimitStrategy, StoredState
from distlimit.app.services.strategies.models import StrategyOutcome, WindowCounterState


def roll_window(
    state: Optional[WindowCounterState], window_ms: int, now_ms: int
) -> WindowCounterState:
    """Bring ``state`` forward to the window containing ``now_ms``.

    The previous count survives only when exactly one window has elapsed.
    A timestamp behind the stored window keeps the stored window as is.
    """
    start = window_index(now_ms, window_ms) * window_ms
    if state is None:
        return WindowCounterState(window_start_ms=start)
    if state.window_start_ms >= start:
        return WindowCounterState(
            window_start_ms=state.window_start_ms,
            current_count=state.current_count,
            previous_count=state.previous_count,
            last_seen_ms=state.last_seen_ms,
        )
    if state.window_start_ms == start - window_ms:
        return WindowCounterState(window_start_ms=start, previous_count=state.current_count)
    return WindowCounterState(window_start_ms=start)


def weighted_count(state: WindowCounterState, window_ms: int, now_ms: int) -> float:
    """Current count plus the overlapping share of the previous window."""
    elapsed_fraction = min(1.0, max(0, now_ms - state.window_start_ms) / window_ms)
    return state.current_count + state.previous_count * (1 - elapsed_fraction)


def try_increment(
    state: Optional[WindowCounterState],
    limit: int,
    window_ms: int,
    cost: int,
    now_ms: int,
) -> Tuple[WindowCounterState, bool, float]:
    """Roll the window and count ``cost`` events if the weighted count allows.

    For a unit cost the request is admitted while the weighted count is
    below ``limit``; larger costs need room for all but their last unit.

    Returns:
        Tuple of (state to persist, allowed, weighted count after the step)
    """
    rolled = roll_window(state, window_ms, now_ms)
    weighted = weighted_count(rolled, window_ms, now_ms)
    if weighted + cost - 1 < limit:
        rolled.current_count += cost
        return rolled, True, weighted + cost
    return rolled, False, weighted


def retry_after_ms(
    state: WindowCounterState, limit: int, window_ms: int, cost: int, now_ms: int
) -> int:
    """Smallest wait after which ``cost`` events would be admitted.

    Checks the decay of the previous window inside the current one first,
    then the roll into the next window, where the current count becomes
    the decaying previous count.
    """
    offset = max(0, now_ms - state.window_start_ms)
    to_next_window = window_ms - offset
    # The weighted count must drop strictly below this threshold
    threshold = limit - cost + 1
    current, previous = state.current_count, state.previous_count

    if current < threshold and previous > 0:
        t = math.floor(window_ms * (1 - (threshold - current) / previous)) + 1
        if t < window_ms:
            return max(1, t - offset)
    if current < threshold:
        return to_next_window
    if threshold <= 0:
        # Cost larger than the limit: nothing will ever fit
        return to_next_window + window_ms
    t = math.floor(window_ms * (1 - threshold / current)) + 1
    return to_next_window + min(t, window_ms)


class SlidingWindowCounterStrategy(RateLimitStrategy):
    """Sliding window counter over (window_start, current, previous).

    Skew is measured against the latest request time applied to the key,
    so a backward jump inside one window is reported too.
    """

    algorithm = Algorithm.SLIDING_WINDOW_COUNTER

    def apply(
        self, prior: StoredState, cost: int, now_ms: int
    ) -> Tuple[Dict[str, Any], StrategyOutcome]:
        rule = self.rule
        state = self.load_state(prior, WindowCounterState)
        skew_ms = 0
        if state is not None:
            skew_ms = max(0, max(state.last_seen_ms, state.window_start_ms) - now_ms)
        # Time never runs backward for a stored window
        effective_now = now_ms + skew_ms

        new_state, allowed, weighted = try_increment(
            state, rule.limit, rule.window_ms, cost, effective_now
        )
        new_state.last_seen_ms = effective_now
        reset_at_ms = new_state.window_start_ms + rule.window_ms

        if allowed:
            outcome = StrategyOutcome(
                allowed=True,
                limit=rule.limit,
                remaining=min(rule.limit, max(0, math.floor(rule.limit - weighted))),
                reset_at_ms=reset_at_ms,
                skew_ms=skew_ms,
            )
        else:
            outcome = StrategyOutcome(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                reset_at_ms=reset_at_ms,
                retry_after_ms=retry_after_ms(
                    new_state, rule.limit, rule.window_ms, cost, effective_now
                ),
                skew_ms=skew_ms,
            )
        return new_state.to_dict(), outcome
