"""Rule loading and per-request rule resolution."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_logger
from distlimit.app.exceptions import InvalidRule
from distlimit.app.services.rules.models import Rule

logger = get_logger(__name__)

RawRule = Union[Rule, Mapping[str, Any]]


def parse_rule(raw: RawRule) -> Rule:
    """Validate one rule definition.

    Raises:
        InvalidRule: If the definition is malformed.
    """
    if isinstance(raw, Rule):
        return raw
    try:
        return Rule.model_validate(dict(raw))
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRule(errors, rule=str(raw.get("name") or raw.get("dimension"))) from e
    except (TypeError, ValueError) as e:
        raise InvalidRule(str(e)) from e


def load_rules(raw_rules: Iterable[RawRule]) -> list[Rule]:
    """Validate a whole rule set.

    Identical duplicates are collapsed; two different rules sharing an id
    are rejected because they would write to the same store keys.

    Raises:
        InvalidRule: On the first invalid rule.
    """
    by_id: dict[str, Rule] = {}
    for raw in raw_rules:
        rule = parse_rule(raw)
        existing = by_id.get(rule.id)
        if existing is not None:
            if existing != rule:
                raise InvalidRule("Conflicting rules share an id", rule=rule.id)
            logger.debug(f"Ignoring duplicate rule {rule.id}")
            continue
        by_id[rule.id] = rule
    return list(by_id.values())


def load_rules_file(path: Union[str, Path]) -> list[Rule]:
    """Load rules from a JSON file holding a list (or {"rules": [...]}).

    Raises:
        InvalidRule: If the file cannot be parsed or a rule is invalid.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidRule(f"Cannot read rules file {path}: {e}") from e
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise InvalidRule(f"Rules file {path} must contain a list of rules")
    return load_rules(data)


def _evaluation_order(rule: Rule) -> tuple:
    # Most restrictive first so denials short-circuit early
    return (rule.priority, rule.limit, rule.id)


class RuleRegistry:
    """Holds the active rule set and resolves rules for a request.

    Each rule's strategy is built once, when the rule set is loaded. The
    active (rules, strategies) snapshot is swapped in one assignment, so a
    reload never exposes a half-loaded set to concurrent requests.
    """

    def __init__(self, rules: Optional[Iterable[RawRule]] = None) -> None:
        self._snapshot: tuple[tuple[Rule, ...], dict[str, Any]] = ((), {})
        if rules is not None:
            self.load(rules)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._snapshot[0]

    def strategy_for(self, rule: Rule):
        """Strategy enforcing an active rule (built on the fly for others)."""
        strategy = self._snapshot[1].get(rule.id)
        if strategy is None or strategy.rule != rule:
            from distlimit.app.services.strategies import build_strategy
            strategy = build_strategy(rule)
        return strategy

    def load(self, raw_rules: Iterable[RawRule]) -> int:
        """Validate and activate a rule set.

        On InvalidRule the previously active set stays in place.

        Returns:
            Number of active rules
        """
        from distlimit.app.services.strategies import build_strategy

        try:
            rules = load_rules(raw_rules)
        except InvalidRule as e:
            logger.error(f"Rule set rejected, keeping {len(self.rules)} active rules: {e}")
            raise
        ordered = tuple(sorted(rules, key=_evaluation_order))
        self._snapshot = (ordered, {rule.id: build_strategy(rule) for rule in ordered})
        logger.info(f"Loaded {len(ordered)} rate limit rules")
        return len(ordered)

    def load_file(self, path: Union[str, Path]) -> int:
        """Validate and activate the rules in a JSON file."""
        try:
            rules = load_rules_file(path)
        except InvalidRule as e:
            logger.error(f"Rules file rejected, keeping {len(self.rules)} active rules: {e}")
            raise
        return self.load(rules)

    def resolve(self, dimensions: Mapping[str, str]) -> list[Rule]:
        """Rules applicable to a request, in evaluation order.

        A rule applies when every component of its dimension is present
        with a non-empty value.
        """
        return [
            rule for rule in self.rules
            if all(dimensions.get(part) for part in rule.dimension_parts)
        ]


_rule_registry: Optional[RuleRegistry] = None


def get_rule_registry() -> RuleRegistry:
    """Get the global rule registry, loading settings.rules_file once."""
    global _rule_registry
    if _rule_registry is None:
        registry = RuleRegistry()
        if settings.rules_file:
            registry.load_file(settings.rules_file)
        _rule_registry = registry
    return _rule_registry


def reset_rule_registry() -> None:
    """Reset the global rule registry (useful for testing)."""
    global _rule_registry
    _rule_registry = None
