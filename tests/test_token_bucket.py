"""Tests for the token bucket strategy."""

import pytest

from distlimit.app.services.rules import Rule
from distlimit.app.services.strategies import BucketState, TokenBucketStrategy, try_consume


def bucket_rule(limit=10, refill_per_sec=10.0, **kwargs):
    return Rule(
        dimension="user_id",
        algorithm="token_bucket",
        limit=limit,
        refill_per_sec=refill_per_sec,
        **kwargs,
    )


class TestTryConsume:
    """Tests for the pure token bucket step."""

    def test_fresh_bucket_starts_full(self):
        state, allowed, tokens = try_consume(None, 10, 10.0, 1, 5_000)

        assert allowed is True
        assert tokens == 9.0
        assert state == BucketState(tokens=9.0, last_refill_ms=5_000)

    def test_refill_is_capped_at_capacity(self):
        state, allowed, tokens = try_consume(BucketState(2.0, 0), 10, 10.0, 1, 60_000)

        assert allowed is True
        assert tokens == 9.0

    def test_denied_without_growth_keeps_state(self):
        prior = BucketState(tokens=0.5, last_refill_ms=1_000)
        state, allowed, tokens = try_consume(prior, 10, 1.0, 1, 1_000)

        assert allowed is False
        assert state == prior

    def test_denied_with_growth_refreshes_timestamp(self):
        prior = BucketState(tokens=0.5, last_refill_ms=1_000)
        state, allowed, tokens = try_consume(prior, 10, 1.0, 1, 1_200)

        assert allowed is False
        assert state.tokens == pytest.approx(0.7)
        assert state.last_refill_ms == 1_200

    def test_backward_clock_adds_no_tokens(self):
        prior = BucketState(tokens=5.0, last_refill_ms=10_000)
        state, allowed, tokens = try_consume(prior, 10, 10.0, 1, 9_000)

        assert allowed is True
        assert tokens == 4.0
        # The stored refill time never moves backward
        assert state.last_refill_ms == 10_000

    def test_cost_above_capacity_always_denies(self):
        state, allowed, _ = try_consume(None, 10, 10.0, 11, 0)
        assert allowed is False
        assert state.tokens == 10.0


class TestTokenBucketStrategy:
    """Tests for the token bucket strategy outcome."""

    def test_remaining_and_reset(self):
        strategy = TokenBucketStrategy(bucket_rule())
        state, outcome = strategy.apply(None, 1, 1_000)

        assert outcome.allowed is True
        assert outcome.remaining == 9
        assert outcome.limit == 10
        # One missing token at 10 tokens/s
        assert outcome.reset_at_ms == 1_100
        assert state == {"tokens": 9.0, "last_refill_ms": 1_000}

    def test_retry_after_on_denial(self):
        strategy = TokenBucketStrategy(bucket_rule())
        _, outcome = strategy.apply({"tokens": 0.0, "last_refill_ms": 1_000}, 1, 1_000)

        assert outcome.allowed is False
        assert outcome.remaining == 0
        assert outcome.retry_after_ms == 100

    def test_skew_reported_for_backward_clock(self):
        strategy = TokenBucketStrategy(bucket_rule())
        _, outcome = strategy.apply({"tokens": 5.0, "last_refill_ms": 10_000}, 1, 7_000)
        assert outcome.skew_ms == 3_000

    def test_rejects_rule_of_other_algorithm(self):
        rule = Rule(dimension="ip", algorithm="fixed_window", limit=5, window_ms=1000)
        with pytest.raises(ValueError):
            TokenBucketStrategy(rule)


class TestTokenBucketBurst:
    """Burst then throttle, end to end through the engine."""

    @pytest.mark.asyncio
    async def test_burst_then_refill(self, make_engine):
        engine = make_engine([
            {"dimension": "user_id", "algorithm": "token_bucket", "limit": 10, "refill_per_sec": 10},
        ])
        dims = {"user_id": "u1"}

        for _ in range(10):
            decision = await engine.evaluate(dims, now=1_000.0)
            assert decision.allowed is True

        decision = await engine.evaluate(dims, now=1_000.0)
        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.retry_after_ms == 100

        admitted = 0
        for _ in range(11):
            if (await engine.evaluate(dims, now=1_001.0)).allowed:
                admitted += 1
        assert admitted == 10
