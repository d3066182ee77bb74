"""Rate limiting services."""
