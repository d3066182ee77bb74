"""Behavior when the shared state store cannot be reached.

Fail-open (the default) admits the request and counts it as uncertain:
an unreachable accounting backend should not take down the protected
service. Fail-closed denies, for rules guarding sensitive or expensive
resources. The choice is made per rule.
"""

from typing import Optional

from distlimit.app.api.metrics import MetricsCollector, get_metrics_collector
from distlimit.app.core.logging import get_log_context, get_logger
from distlimit.app.exceptions import StoreError
from distlimit.app.services.rules.models import FailPolicy, Rule

logger = get_logger(__name__)


class FailurePolicy:
    """Routes store failures to the rule's fail policy."""

    def __init__(self, metrics: Optional[MetricsCollector] = None) -> None:
        self._metrics = metrics

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics_collector()

    async def on_store_failure(self, rule: Rule, error: StoreError) -> bool:
        """Decide whether to admit a request whose check hit a store error.

        Args:
            rule: Rule whose check failed
            error: StoreUnavailable or StoreOperationAborted

        Returns:
            True to admit (fail-open), False to deny (fail-closed)
        """
        error_type = type(error).__name__
        await self.metrics.record_store_failure(error_type)
        context = get_log_context(
            rule_id=rule.id,
            dimension=rule.dimension,
            error_type=error_type,
            fail_policy=rule.fail_policy.value,
        )

        if rule.fail_policy is FailPolicy.CLOSED:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. Request denied.",
                extra=context,
            )
            await self.metrics.record_fail_closed(rule.id)
            return False

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        await self.metrics.record_uncertain(rule.id)
        return True
