"""Token bucket strategy.

Permits bursts up to the bucket capacity, then throttles to the refill rate.
"""

import math
from typing import Any, Dict, Optional, Tuple

from distlimit.app.services.rules.models import Algorithm
from distlimit.app.services.strategies.base import RateLimitStrategy, StoredState
from distlimit.app.services.strategies.models import BucketState, StrategyOutcome


def try_consume(
    state: Optional[BucketState],
    capacity: int,
    refill_per_sec: float,
    cost: int,
    now_ms: int,
) -> Tuple[BucketState, bool, float]:
    """Refill the bucket up to ``now_ms`` and try to take ``cost`` tokens.

    A clock running backward counts as zero elapsed time and never moves
    the stored refill time backward.

    Returns:
        Tuple of (state to persist, allowed, tokens left)
    """
    if state is None:
        tokens, last_refill_ms = float(capacity), now_ms
    else:
        tokens, last_refill_ms = state.tokens, state.last_refill_ms

    elapsed_ms = max(0, now_ms - last_refill_ms)
    refilled = min(float(capacity), tokens + elapsed_ms * refill_per_sec / 1000)

    if refilled >= cost:
        left = refilled - cost
        return BucketState(tokens=left, last_refill_ms=max(last_refill_ms, now_ms)), True, left

    # Denied: only move the timestamp if the refill actually added tokens
    if refilled > tokens:
        return BucketState(tokens=refilled, last_refill_ms=now_ms), False, refilled
    return BucketState(tokens=tokens, last_refill_ms=last_refill_ms), False, tokens


class TokenBucketStrategy(RateLimitStrategy):
    """Token bucket over a stored (tokens, last_refill_ms) pair."""

    algorithm = Algorithm.TOKEN_BUCKET

    def apply(
        self, prior: StoredState, cost: int, now_ms: int
    ) -> Tuple[Dict[str, Any], StrategyOutcome]:
        rule = self.rule
        state = self.load_state(prior, BucketState)
        skew_ms = max(0, state.last_refill_ms - now_ms) if state else 0

        new_state, allowed, tokens = try_consume(
            state, rule.limit, rule.refill_per_sec, cost, now_ms
        )

        tokens_per_ms = rule.refill_per_sec / 1000
        reset_at_ms = now_ms + math.ceil((rule.limit - tokens) / tokens_per_ms)
        if allowed:
            outcome = StrategyOutcome(
                allowed=True,
                limit=rule.limit,
                remaining=min(rule.limit, math.floor(tokens)),
                reset_at_ms=reset_at_ms,
                skew_ms=skew_ms,
            )
        else:
            outcome = StrategyOutcome(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                reset_at_ms=reset_at_ms,
                retry_after_ms=max(1, math.ceil((cost - tokens) / tokens_per_ms)),
                skew_ms=skew_ms,
            )
        return new_state.to_dict(), outcome
