"""Tests for rate limit key resolution."""

import hashlib

from distlimit.app.services.keys import KeyResolver, RateLimitKey
from distlimit.app.services.rules import Rule


class TestRateLimitKey:
    """Tests for RateLimitKey."""

    def test_identifier_is_hashed(self):
        key = RateLimitKey(dimension="user_id", identifier="alice", rule_id="r1", algorithm="fixed_window")
        expected = hashlib.sha256(b"alice").hexdigest()[:32]

        assert key.identifier_hash == expected
        assert key.to_store_key("ratelimit") == f"ratelimit:r1:fixed_window:user_id:{expected}"
        assert "alice" not in key.to_store_key("ratelimit")

    def test_window_index_suffix(self):
        key = RateLimitKey(
            dimension="ip", identifier="1.2.3.4", rule_id="r1", algorithm="fixed_window", window_index=42
        )
        assert key.to_store_key("rl").endswith(":42")


class TestKeyResolver:
    """Tests for KeyResolver."""

    def test_composite_identifier(self):
        rule = Rule(dimension="api_key+endpoint", algorithm="sliding_window_counter",
                    limit=10, window_ms=1000)
        resolver = KeyResolver(prefix="rl")
        key = resolver.resolve(rule, {"api_key": "k1", "endpoint": "GET /a", "ip": "x"}, 0)

        assert key.identifier == '["k1","GET /a"]'
        assert key.window_index is None

    def test_fixed_window_key_changes_per_window(self):
        rule = Rule(dimension="ip", algorithm="fixed_window", limit=10, window_ms=1000)
        resolver = KeyResolver(prefix="rl")
        dims = {"ip": "1.2.3.4"}

        assert resolver.store_key(rule, dims, 1_500) == resolver.store_key(rule, dims, 1_999)
        assert resolver.store_key(rule, dims, 1_500) != resolver.store_key(rule, dims, 2_000)

    def test_rules_do_not_share_keys(self):
        per_second = Rule(dimension="user_id", algorithm="sliding_window_counter",
                          limit=10, window_ms=1000)
        per_minute = Rule(dimension="user_id", algorithm="sliding_window_counter",
                          limit=100, window_ms=60_000)
        resolver = KeyResolver()
        dims = {"user_id": "u1"}

        assert resolver.store_key(per_second, dims, 0) != resolver.store_key(per_minute, dims, 0)

    def test_default_prefix_from_settings(self):
        assert KeyResolver().prefix == "ratelimit"

    def test_composite_values_containing_separator_do_not_collide(self):
        rule = Rule(dimension="a+b", algorithm="fixed_window", limit=1, window_ms=1000)
        resolver = KeyResolver()

        first = resolver.store_key(rule, {"a": "x+y", "b": "z"}, 0)
        second = resolver.store_key(rule, {"a": "x", "b": "y+z"}, 0)

        assert first != second

    def test_algorithm_in_key(self):
        bucket = Rule(name="per-user", dimension="user_id", algorithm="token_bucket",
                      limit=5, refill_per_sec=1)
        window = Rule(name="per-user", dimension="user_id", algorithm="sliding_window_counter",
                      limit=5, window_ms=1000)
        resolver = KeyResolver()
        dims = {"user_id": "u1"}

        assert bucket.id == window.id
        assert resolver.store_key(bucket, dims, 0) != resolver.store_key(window, dims, 0)
        assert ":token_bucket:" in resolver.store_key(bucket, dims, 0)
