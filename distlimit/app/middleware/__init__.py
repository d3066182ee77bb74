"""Middleware package for the rate limiter."""

from distlimit.app.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "RateLimitMiddleware",
]
