"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow case-insensitive env var matching
        extra="ignore"
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    # LOG_DIR: Directory for the rotating JSON log file. Empty disables file logging.
    log_dir: str = "logs"

    # Replicate configuration
    # Only required when the Replicate backend is actually called
    replicate_api_token: Optional[str] = None

    # Backend tiers
    # PRIMARY_MODEL: High-quality model tried first
    # SECONDARY_MODEL: Fast model used when the primary tier stays overloaded
    primary_model: str = "google/nano-banana-pro"
    secondary_model: str = "google/nano-banana"

    # Per remote call wall-clock ceiling (seconds). Timeouts are retried like overloads.
    generation_timeout_seconds: float = 150.0

    # Per-tier retry budget (retries after the first attempt)
    tier_max_retries: int = 3
    tier_initial_delay: float = 1.0
    tier_backoff_multiplier: float = 2.0

    # Stand-alone backoff defaults
    backoff_max_retries: int = 5
    backoff_initial_delay: float = 2.0
    backoff_multiplier: float = 1.5

    # Hourly concurrency policy
    # Congested window wraps midnight when start > end (default 23:00-09:00)
    concurrency_normal_limit: int = 3
    concurrency_congested_limit: int = 1
    congested_start_hour: int = 23
    congested_end_hour: int = 9

    @field_validator("replicate_api_token")
    @classmethod
    def validate_replicate_api_token(cls, v: Optional[str]) -> Optional[str]:
        """Validate Replicate API token format."""
        if not v:
            return None
        if not v.startswith("r8_"):
            raise ConfigError("REPLICATE_API_TOKEN must start with 'r8_'")
        if len(v) < 20:
            raise ConfigError("REPLICATE_API_TOKEN appears to be invalid")
        return v

    @field_validator("generation_timeout_seconds")
    @classmethod
    def validate_generation_timeout(cls, v: float) -> float:
        """Validate per-call timeout range."""
        if v <= 0 or v > 600:
            raise ConfigError("GENERATION_TIMEOUT_SECONDS must be in (0, 600]")
        return v

    @field_validator("tier_max_retries", "backoff_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Retry budgets cannot be negative."""
        if v < 0:
            raise ConfigError("Retry budgets must be >= 0")
        return v

    @field_validator("tier_backoff_multiplier", "backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        """Backoff multipliers are kept within 1.5-2.0."""
        if v < 1.5 or v > 2.0:
            raise ConfigError("Backoff multipliers must be between 1.5 and 2.0")
        return v

    @field_validator("concurrency_normal_limit", "concurrency_congested_limit")
    @classmethod
    def validate_concurrency_limit(cls, v: int) -> int:
        """Concurrency limits must admit at least one task."""
        if v < 1:
            raise ConfigError("Concurrency limits must be >= 1")
        return v

    @field_validator("congested_start_hour", "congested_end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour of day."""
        if v < 0 or v > 23:
            raise ConfigError("Congested hours must be between 0 and 23")
        return v

    @model_validator(mode="after")
    def validate_tiers(self) -> "Settings":
        """Both tiers must be named."""
        if not self.primary_model or not self.secondary_model:
            raise ConfigError("PRIMARY_MODEL and SECONDARY_MODEL are required")
        return self


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
