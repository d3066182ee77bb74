"""HTTP endpoints of the rate limiter."""
