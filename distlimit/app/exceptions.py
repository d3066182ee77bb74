"""Custom exceptions for the rate limiting engine."""


class RateLimitError(Exception):
    """Base class for rate limiting exceptions.

    All custom exceptions inherit from this class. ``status_code`` is the
    HTTP status an outer surface should use if the error ever escapes.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class StoreError(RateLimitError):
    """Base class for shared state store failures."""
    status_code = 503

    def __init__(self, message: str = "State store error", key: str | None = None):
        self.key = key
        super().__init__(message)


class StoreUnavailable(StoreError):
    """Raised when the store cannot be reached (network error or timeout)."""

    def __init__(self, message: str = "State store unavailable", key: str | None = None):
        super().__init__(message, key=key)


class StoreOperationAborted(StoreError):
    """Raised when an atomic update lost too many races to complete.

    Safe to retry: nothing was written.
    """

    def __init__(
        self,
        message: str = "State store operation aborted",
        key: str | None = None,
        attempts: int = 0,
    ):
        self.attempts = attempts
        super().__init__(message, key=key)


class InvalidRule(RateLimitError):
    """Raised at rule-load time for a rule that must not be activated.

    Maps to HTTP 500: a broken rule set is an operator error.
    """

    def __init__(self, message: str = "Invalid rate limit rule", rule: str | None = None):
        self.rule = rule
        if rule:
            message = f"{message} (rule: {rule})"
        super().__init__(message)


class ClockSkewDetected(RateLimitError):
    """Describes a clock running behind the last observed state time.

    Never raised out of ``evaluate``; the engine logs it and counts it.
    """

    def __init__(self, key: str, skew_ms: int, tolerance_ms: int):
        self.key = key
        self.skew_ms = skew_ms
        self.tolerance_ms = tolerance_ms
        super().__init__(
            f"Clock skew of {skew_ms}ms detected for {key} "
            f"(tolerance {tolerance_ms}ms)"
        )
