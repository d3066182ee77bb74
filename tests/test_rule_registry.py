"""Tests for rule validation, loading and resolution."""

import json

import pytest

from distlimit.app.core.config import settings
from distlimit.app.exceptions import InvalidRule
from distlimit.app.services.rules import (
    Algorithm,
    FailPolicy,
    Rule,
    RuleRegistry,
    get_rule_registry,
    load_rules,
    load_rules_file,
    parse_rule,
)
from distlimit.app.services.strategies import SlidingWindowCounterStrategy

USER_RULE = {"dimension": "user_id", "algorithm": "sliding_window_counter", "limit": 100, "window_ms": 60_000}
IP_RULE = {"dimension": "ip", "algorithm": "fixed_window", "limit": 1000, "window_ms": 60_000}
BUCKET_RULE = {"dimension": "api_key", "algorithm": "token_bucket", "limit": 10, "refill_per_sec": 2.5}


class TestRuleValidation:
    """Tests for parse_rule."""

    def test_valid_rule(self):
        rule = parse_rule(USER_RULE)

        assert rule.algorithm is Algorithm.SLIDING_WINDOW_COUNTER
        assert rule.fail_policy is FailPolicy.OPEN
        assert rule.cost == 1
        assert rule.id == "user_id:sliding_window_counter:100:60000"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"limit": 0},
            {"limit": -5},
            {"cost": 0},
            {"cost": 101},
            {"window_ms": 0},
            {"algorithm": "leaky_bucket"},
            {"dimension": "user_id+"},
            {"fail_policy": "maybe"},
            {"unknown_field": 1},
        ],
    )
    def test_invalid_rules_rejected(self, overrides):
        with pytest.raises(InvalidRule):
            parse_rule({**USER_RULE, **overrides})

    def test_token_bucket_needs_refill_rate(self):
        with pytest.raises(InvalidRule) as exc_info:
            parse_rule({"dimension": "ip", "algorithm": "token_bucket", "limit": 10})
        assert "refill_per_sec" in exc_info.value.message

    def test_named_rule_keeps_name_as_id(self):
        rule = parse_rule({**USER_RULE, "name": "per-user"})
        assert rule.id == "per-user"

    def test_token_bucket_derived_values(self):
        rule = parse_rule(BUCKET_RULE)

        assert rule.id == "api_key:token_bucket:10:2.5"
        assert rule.refill_interval_ms == 4000
        assert rule.ttl_ms == 4000
        assert rule.retry_hint_ms == 400

    def test_window_ttls(self):
        assert parse_rule(USER_RULE).ttl_ms == 120_000
        assert parse_rule(IP_RULE).ttl_ms == 60_000

    def test_rules_are_immutable(self):
        rule = parse_rule(USER_RULE)
        with pytest.raises(Exception):
            rule.limit = 5


class TestLoadRules:
    """Tests for rule set loading."""

    def test_identical_duplicates_collapse(self):
        assert len(load_rules([USER_RULE, dict(USER_RULE), IP_RULE])) == 2

    def test_conflicting_ids_rejected(self):
        with pytest.raises(InvalidRule, match="Conflicting"):
            load_rules([
                {**USER_RULE, "name": "r"},
                {**IP_RULE, "name": "r"},
            ])

    def test_load_rules_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": [USER_RULE, BUCKET_RULE]}))

        rules = load_rules_file(path)
        assert [r.dimension for r in rules] == ["user_id", "api_key"]

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")

        with pytest.raises(InvalidRule, match="Cannot read"):
            load_rules_file(path)
        with pytest.raises(InvalidRule):
            load_rules_file(tmp_path / "missing.json")


class TestRuleRegistry:
    """Tests for RuleRegistry."""

    def test_evaluation_order(self):
        registry = RuleRegistry([IP_RULE, USER_RULE, {**BUCKET_RULE, "priority": 5}])
        assert [r.dimension for r in registry.rules] == ["user_id", "ip", "api_key"]

    def test_resolve_requires_every_dimension_part(self):
        registry = RuleRegistry([
            USER_RULE,
            {"dimension": "api_key+endpoint", "algorithm": "fixed_window", "limit": 5, "window_ms": 1000},
        ])

        assert [r.dimension for r in registry.resolve({"user_id": "u1", "api_key": "k"})] == ["user_id"]
        assert len(registry.resolve({"user_id": "u1", "api_key": "k", "endpoint": "GET /"})) == 2
        assert registry.resolve({"user_id": ""}) == []

    def test_failed_reload_keeps_previous_set(self):
        registry = RuleRegistry([USER_RULE])

        with pytest.raises(InvalidRule):
            registry.load([IP_RULE, {**USER_RULE, "limit": -1}])

        assert [r.dimension for r in registry.rules] == ["user_id"]

    def test_strategy_built_on_load(self):
        registry = RuleRegistry([USER_RULE])
        rule = registry.rules[0]

        strategy = registry.strategy_for(rule)
        assert isinstance(strategy, SlidingWindowCounterStrategy)
        assert registry.strategy_for(rule) is strategy

    def test_strategy_for_unknown_rule(self):
        registry = RuleRegistry()
        rule = Rule(**IP_RULE)
        assert registry.strategy_for(rule).rule == rule

    def test_global_registry_loads_rules_file(self, tmp_path, monkeypatch):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([USER_RULE]))
        monkeypatch.setattr(settings, "rules_file", str(path))

        registry = get_rule_registry()
        assert len(registry.rules) == 1
        assert get_rule_registry() is registry
