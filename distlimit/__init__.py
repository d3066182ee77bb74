"""Distributed rate limiting engine."""

__version__ = "0.1.0"
