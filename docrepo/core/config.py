"""
docrepo Configuration

Configuration management with environment variable support.
Implements defaults and validation for cache, retry and normalization settings.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..domain.cache.value_objects import CacheConfig, EvictionPolicy
from ..services.retry import RetryPolicy


class Settings(BaseSettings):
    """Repository layer settings with validation and safe defaults.

    Read from ``DOCREPO_``-prefixed environment variables or a ``.env`` file,
    e.g. ``DOCREPO_CACHE_TTL_SECONDS=30``.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCREPO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Cache configuration
    CACHE_ENABLED: bool = Field(default=True, description="Enable read caching")
    CACHE_TTL_SECONDS: float = Field(
        default=300.0, gt=0, le=86400, description="Default cache entry TTL"
    )
    CACHE_MAX_SIZE: int = Field(
        default=100, ge=1, le=100_000, description="Maximum cached entries per repository"
    )
    CACHE_SWEEP_INTERVAL_SECONDS: float = Field(
        default=60.0, gt=0, le=3600, description="Interval between expired-entry sweeps"
    )
    CACHE_EVICTION_POLICY: EvictionPolicy = Field(
        default=EvictionPolicy.FIFO, description="Eviction order when the cache is full"
    )

    # Retry configuration
    RETRY_MAX_RETRIES: int = Field(
        default=3, ge=0, le=10, description="Retries after the first attempt"
    )
    RETRY_BASE_DELAY_SECONDS: float = Field(
        default=1.0, ge=0, le=60, description="Delay before the first retry"
    )
    RETRY_MAX_DELAY_SECONDS: float = Field(
        default=5.0, ge=0, le=300, description="Upper bound for a single retry delay"
    )
    RETRY_BACKOFF_FACTOR: float = Field(
        default=2.0, ge=1.0, le=10.0, description="Exponential backoff multiplier"
    )
    RETRY_TRANSIENT_ONLY: bool = Field(
        default=True,
        description="Only retry transient failures; permanent errors fail fast",
    )

    # Document processing
    NORMALIZE_TIMESTAMPS_IN_SEQUENCES: bool = Field(
        default=False,
        description="Also convert store timestamps found inside list fields",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("CACHE_EVICTION_POLICY", mode="before")
    @classmethod
    def validate_eviction_policy(cls, v):
        """Accept the policy name in any case."""
        if isinstance(v, str):
            return v.lower()
        return v

    def cache_config(self) -> CacheConfig:
        """Build the per-repository cache configuration."""
        return CacheConfig(
            enabled=self.CACHE_ENABLED,
            ttl_seconds=self.CACHE_TTL_SECONDS,
            max_size=self.CACHE_MAX_SIZE,
            sweep_interval_seconds=self.CACHE_SWEEP_INTERVAL_SECONDS,
            eviction_policy=self.CACHE_EVICTION_POLICY,
        )

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used by repositories."""
        return RetryPolicy(
            max_retries=self.RETRY_MAX_RETRIES,
            base_delay=self.RETRY_BASE_DELAY_SECONDS,
            max_delay=self.RETRY_MAX_DELAY_SECONDS,
            backoff_factor=self.RETRY_BACKOFF_FACTOR,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
