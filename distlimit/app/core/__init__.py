"""Core utilities for the rate limiter."""

from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_log_context, get_logger, setup_logging
from distlimit.app.core.utils import now_seconds, to_millis, window_index

__all__ = [
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "now_seconds",
    "to_millis",
    "window_index",
]
