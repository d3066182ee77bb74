"""Rate limit key resolution.

Identifiers (user ids, API keys, IPs) are hashed with SHA-256 before they
reach the store so raw values are never stored or exposed in key listings.
The algorithm is part of every key: a named rule that switches algorithm
on reload starts from fresh state instead of reading the old shape.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Mapping, Optional

from distlimit.app.core.config import settings
from distlimit.app.core.utils import window_index
from distlimit.app.services.rules.models import Algorithm, Rule

# 32 hex chars (128 bits) for collision resistance
IDENTIFIER_HASH_LENGTH = 32


@dataclass(frozen=True)
class RateLimitKey:
    """Identity of one quota instance."""
    dimension: str
    identifier: str
    rule_id: str
    algorithm: str
    window_index: Optional[int] = None

    @property
    def identifier_hash(self) -> str:
        return hashlib.sha256(self.identifier.encode()).hexdigest()[:IDENTIFIER_HASH_LENGTH]

    def to_store_key(self, prefix: str) -> str:
        """Render the key used in the shared state store.

        Format: {prefix}:{rule_id}:{algorithm}:{dimension}:{hash}[:{window_index}]
        """
        key = f"{prefix}:{self.rule_id}:{self.algorithm}:{self.dimension}:{self.identifier_hash}"
        if self.window_index is not None:
            key = f"{key}:{self.window_index}"
        return key


class KeyResolver:
    """Derives store keys from a rule and the request dimensions."""

    def __init__(self, prefix: Optional[str] = None) -> None:
        self.prefix = prefix or settings.key_prefix

    def identifier_for(self, rule: Rule, dimensions: Mapping[str, str]) -> str:
        """Identifier of the request for ``rule``'s dimension.

        Composite dimensions encode their values as a JSON list, so values
        that themselves contain the separator cannot run into each other.
        """
        values = [str(dimensions[part]) for part in rule.dimension_parts]
        if len(values) == 1:
            return values[0]
        return json.dumps(values, separators=(",", ":"), ensure_ascii=False)

    def resolve(self, rule: Rule, dimensions: Mapping[str, str], now_ms: int) -> RateLimitKey:
        """Build the key for ``rule`` at ``now_ms``.

        Fixed windows put the window index into the key so each window gets
        a fresh counter; the other algorithms keep one key per identity.
        """
        index = None
        if rule.algorithm is Algorithm.FIXED_WINDOW:
            index = window_index(now_ms, rule.window_ms)
        return RateLimitKey(
            dimension=rule.dimension,
            identifier=self.identifier_for(rule, dimensions),
            rule_id=rule.id,
            algorithm=rule.algorithm.value,
            window_index=index,
        )

    def store_key(self, rule: Rule, dimensions: Mapping[str, str], now_ms: int) -> str:
        return self.resolve(rule, dimensions, now_ms).to_store_key(self.prefix)
