"""Rate limit rules: models, loading and resolution."""

from distlimit.app.services.rules.models import (
    DIMENSION_SEPARATOR,
    Algorithm,
    FailPolicy,
    Rule,
)
from distlimit.app.services.rules.registry import (
    RuleRegistry,
    get_rule_registry,
    load_rules,
    load_rules_file,
    parse_rule,
    reset_rule_registry,
)

__all__ = [
    "DIMENSION_SEPARATOR",
    "Algorithm",
    "FailPolicy",
    "Rule",
    "RuleRegistry",
    "get_rule_registry",
    "load_rules",
    "load_rules_file",
    "parse_rule",
    "reset_rule_registry",
]
