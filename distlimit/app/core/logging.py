"""Structured logging configuration for the rate limiter.

Uses the standard logging module configured through dictConfig. Decision
and store-failure logs carry rule and dimension context so they can be
filtered in a log aggregator; ``log_format=json`` emits one JSON object
per record.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from distlimit.app.core.config import settings

# Fields passed through extra= by the engine, the failure policy and the middleware
CONTEXT_FIELDS = (
    "request_id",
    "rule_id",
    "dimension",
    "rate_limit_key",
    "error_type",
    "fail_policy",
    "path",
    "method",
)

# Attributes every LogRecord has; anything else came from extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects.

    Known context fields are promoted to the top level; other extra= values
    are nested under "extra".
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or value is None:
                continue
            if key in CONTEXT_FIELDS:
                log_data[key] = value
            else:
                log_data.setdefault("extra", {})[key] = value

        if record.exc_info:
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Gives every record the context fields, None when not passed.

    The "structured" text format interpolates them and would fail on a
    record that lacks one.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for ``settings.log_format`` and ``settings.log_level``."""
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
        "structured": {
            "format": (
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                " - rule_id=%(rule_id)s - dimension=%(dimension)s - error_type=%(error_type)s"
            ),
        },
        "json": {"()": "distlimit.app.core.logging.JSONFormatter"},
    }
    formatter = log_format if log_format in formatters else "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": "distlimit.app.core.logging.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "distlimit": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "distlimit") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    rule_id: Optional[str] = None,
    dimension: Optional[str] = None,
    rate_limit_key: Optional[str] = None,
    error_type: Optional[str] = None,
    request_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for the extra= parameter.

    None values are dropped.

    Example:
        >>> logger.warning(
        ...     "Store unavailable",
        ...     extra=get_log_context(rule_id="per-user", dimension="user_id")
        ... )
    """
    context = {
        "rule_id": rule_id,
        "dimension": dimension,
        "rate_limit_key": rate_limit_key,
        "error_type": error_type,
        "request_id": request_id,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
