from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional, in-memory store otherwise)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Prefix for every key written to the shared store
    key_prefix: str = "ratelimit"

    # Store call budget
    store_timeout_ms: int = 5  # Per atomic update, retries included
    store_max_attempts: int = 3  # CAS attempts before giving up
    store_retry_base_delay_ms: float = 0.5
    store_retry_max_delay_ms: float = 2.0

    # Clock skew tolerance before a backward clock is reported
    clock_skew_tolerance_ms: int = 1000

    # Stop evaluating rules after the first denial
    short_circuit: bool = True

    # Default failure policy for rules that do not set one
    default_fail_policy: Literal["open", "closed"] = "open"

    # JSON file with the rule list (empty = no rules loaded at startup)
    rules_file: str = ""

    # HTTP dimension extraction
    user_id_header: str = "X-User-ID"
    max_api_key_length: int = 512

    @field_validator("store_timeout_ms", "store_max_attempts", "max_api_key_length")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate store budget values are positive."""
        if v < 1:
            raise ValueError("Store budget values must be at least 1")
        return v

    @field_validator("store_retry_base_delay_ms", "store_retry_max_delay_ms")
    @classmethod
    def validate_delay_non_negative(cls, v: float) -> float:
        """Validate retry delays are not negative."""
        if v < 0:
            raise ValueError("Retry delays must not be negative")
        return v

    @field_validator("clock_skew_tolerance_ms")
    @classmethod
    def validate_tolerance(cls, v: int) -> int:
        if v < 0:
            raise ValueError("clock_skew_tolerance_ms must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
