"""Metrics and monitoring endpoints for the rate limiter.

This module provides Prometheus-compatible metrics for rate limit decisions,
store failures, fail-open ("uncertain") admissions and clock skew.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from distlimit.app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@dataclass
class DimensionMetrics:
    """Checks of a single dimension."""

    allowed: int = 0
    denied: int = 0
    total_duration: float = 0.0

    @property
    def count(self) -> int:
        return self.allowed + self.denied


@dataclass
class MetricsCollector:
    """Collects and stores rate limiter metrics.

    Safe for concurrent use from coroutines. Collects:
    - Decisions per request and checks per dimension
    - Store failures by error type
    - Fail-open admissions (uncertain) and fail-closed denials per rule
    - Clock skew events
    """

    _checks: Dict[str, DimensionMetrics] = field(
        default_factory=lambda: defaultdict(DimensionMetrics)
    )

    _decisions_allowed: int = 0
    _decisions_denied: int = 0

    _store_failures: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _uncertain: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _fail_closed: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _clock_skew: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    _start_time: float = field(default_factory=time.time)

    async def record_check(self, dimension: str, allowed: bool, duration: float) -> None:
        """Record one dimension check.

        Args:
            dimension: Dimension name
            allowed: Whether the dimension admitted the request
            duration: Store round-trip in seconds
        """
        async with self._lock:
            metrics = self._checks[dimension]
            if allowed:
                metrics.allowed += 1
            else:
                metrics.denied += 1
            metrics.total_duration += duration

    async def record_decision(self, allowed: bool) -> None:
        """Record the combined decision for a request."""
        async with self._lock:
            if allowed:
                self._decisions_allowed += 1
            else:
                self._decisions_denied += 1

    async def record_store_failure(self, error_type: str) -> None:
        async with self._lock:
            self._store_failures[error_type] += 1

    async def record_uncertain(self, rule_id: str) -> None:
        """Record a request admitted without consulting the store."""
        async with self._lock:
            self._uncertain[rule_id] += 1

    async def record_fail_closed(self, rule_id: str) -> None:
        async with self._lock:
            self._fail_closed[rule_id] += 1

    async def record_clock_skew(self, rule_id: str) -> None:
        async with self._lock:
            self._clock_skew[rule_id] += 1

    async def get_uncertain_total(self) -> int:
        async with self._lock:
            return sum(self._uncertain.values())

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Returns:
            Dictionary with metrics summary
        """
        async with self._lock:
            total = self._decisions_allowed + self._decisions_denied
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "decisions": {
                    "total": total,
                    "allowed": self._decisions_allowed,
                    "denied": self._decisions_denied,
                    "denied_rate": round(self._decisions_denied / total, 4) if total > 0 else 0,
                },
                "dimensions": {
                    name: {
                        "allowed": m.allowed,
                        "denied": m.denied,
                        "avg_store_ms": round((m.total_duration / m.count) * 1000, 3)
                        if m.count > 0
                        else 0,
                    }
                    for name, m in self._checks.items()
                },
                "store_failures": dict(self._store_failures),
                "uncertain": dict(self._uncertain),
                "fail_closed": dict(self._fail_closed),
                "clock_skew": dict(self._clock_skew),
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        async with self._lock:
            lines = []

            lines.append("# HELP ratelimit_decisions_total Combined decisions per request")
            lines.append("# TYPE ratelimit_decisions_total counter")
            lines.append(f'ratelimit_decisions_total{{result="allowed"}} {self._decisions_allowed}')
            lines.append(f'ratelimit_decisions_total{{result="denied"}} {self._decisions_denied}')

            lines.append("\n# HELP ratelimit_checks_total Dimension checks by outcome")
            lines.append("# TYPE ratelimit_checks_total counter")
            for dimension, metrics in self._checks.items():
                lines.append(
                    f'ratelimit_checks_total{{dimension="{dimension}",result="allowed"}} {metrics.allowed}'
                )
                lines.append(
                    f'ratelimit_checks_total{{dimension="{dimension}",result="denied"}} {metrics.denied}'
                )

            lines.append("\n# HELP ratelimit_store_duration_seconds Total store round-trip time")
            lines.append("# TYPE ratelimit_store_duration_seconds counter")
            for dimension, metrics in self._checks.items():
                lines.append(
                    f'ratelimit_store_duration_seconds{{dimension="{dimension}"}} {metrics.total_duration}'
                )

            lines.append("\n# HELP ratelimit_store_failures_total Store failures by error type")
            lines.append("# TYPE ratelimit_store_failures_total counter")
            for error_type, count in self._store_failures.items():
                lines.append(f'ratelimit_store_failures_total{{error_type="{error_type}"}} {count}')

            lines.append(
                "\n# HELP ratelimit_uncertain_total Requests admitted by fail-open without a store check"
            )
            lines.append("# TYPE ratelimit_uncertain_total counter")
            for rule_id, count in self._uncertain.items():
                lines.append(f'ratelimit_uncertain_total{{rule="{rule_id}"}} {count}')

            lines.append("\n# HELP ratelimit_fail_closed_total Requests denied by fail-closed")
            lines.append("# TYPE ratelimit_fail_closed_total counter")
            for rule_id, count in self._fail_closed.items():
                lines.append(f'ratelimit_fail_closed_total{{rule="{rule_id}"}} {count}')

            lines.append("\n# HELP ratelimit_clock_skew_total Backward clock events beyond tolerance")
            lines.append("# TYPE ratelimit_clock_skew_total counter")
            for rule_id, count in self._clock_skew.items():
                lines.append(f'ratelimit_clock_skew_total{{rule="{rule_id}"}} {count}')

            lines.append("\n# HELP ratelimit_uptime_seconds Uptime in seconds")
            lines.append("# TYPE ratelimit_uptime_seconds gauge")
            lines.append(
                f"ratelimit_uptime_seconds{{}} {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance.

    Returns:
        MetricsCollector singleton instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics() -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint.

    Returns:
        Plain text response with Prometheus-formatted metrics
    """
    collector = get_metrics_collector()
    content = await collector.get_prometheus_metrics()
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def rate_limit_stats() -> dict[str, Any]:
    """Detailed rate limiter statistics."""
    collector = get_metrics_collector()
    return await collector.get_summary()
