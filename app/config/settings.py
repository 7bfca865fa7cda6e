"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from string import Formatter

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.business_constants import (
    DEFAULT_FALLBACK_RATE_BPS,
    DEFAULT_PLATFORM_FEE_BPS,
    DEFAULT_STRATEGY_LABEL,
    MAX_BPS,
)
from app.config.operational_constants import (
    ACCRUAL_INTERVAL_MINUTES,
    LOCK_TIMEOUT_LONG,
    RATE_CACHE_TTL_SECONDS,
    RATE_FEED_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Redis (sweep lock and Dramatiq broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0
    use_redis_lock: bool = Field(
        default=True,
        description="Guard sweeps with a Redis lock instead of a process-local one"
    )

    # Rate feed
    rate_feed_url: str = Field(
        default="",
        description="Rate endpoint template with a {token} placeholder; empty uses the fallback rate"
    )
    rate_feed_timeout_seconds: float = Field(
        default=RATE_FEED_TIMEOUT_SECONDS, gt=0, le=60
    )
    rate_cache_ttl_seconds: int = Field(
        default=RATE_CACHE_TTL_SECONDS, ge=0
    )
    fallback_rate_bps: int = Field(
        default=DEFAULT_FALLBACK_RATE_BPS,
        ge=0,
        le=MAX_BPS,
        description="Annual rate used when the feed is unavailable"
    )

    # Yield split
    platform_fee_bps: int = Field(
        default=DEFAULT_PLATFORM_FEE_BPS,
        description="Platform cut of earned yield in basis points"
    )
    strategy_label: str = DEFAULT_STRATEGY_LABEL

    # Scheduler
    accrual_interval_minutes: int = Field(
        default=ACCRUAL_INTERVAL_MINUTES, ge=1
    )
    sweep_lock_timeout_seconds: int = Field(
        default=LOCK_TIMEOUT_LONG, ge=1
    )

    # HTTP
    api_host: str = "0.0.0.0"
    api_port: int = Field(
        default=8080, ge=1, le=65535, description="API and health check port"
    )

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = "logs/yield.log"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("platform_fee_bps")
    @classmethod
    def validate_platform_fee(cls, v: int) -> int:
        """Reject fee rates outside [0, 10000] instead of clamping."""
        if v < 0 or v > MAX_BPS:
            raise ValueError(
                f"PLATFORM_FEE_BPS must be within 0..{MAX_BPS}, got {v}"
            )
        return v

    @field_validator("rate_feed_url")
    @classmethod
    def validate_rate_feed_url(cls, v: str) -> str:
        """Rate feed URL must be http(s) and carry only a {token} placeholder."""
        if not v:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RATE_FEED_URL must start with http:// or https://")
        try:
            fields = {
                name for _, name, _, _ in Formatter().parse(v) if name is not None
            }
        except ValueError as e:
            raise ValueError(f"RATE_FEED_URL is not a valid template: {e}") from e
        if fields != {"token"}:
            raise ValueError(
                "RATE_FEED_URL must contain a {token} placeholder and no other fields"
            )
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError(
                "DATABASE_URL must start with postgresql:// or postgresql+asyncpg://"
            )
        if v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Validate production-specific requirements."""
        if self.environment == "production":
            if self.debug:
                raise ValueError(
                    "DEBUG must be False in production environment. "
                    "Set DEBUG=false in your .env file."
                )
            if not self.rate_feed_url:
                logger.warning(
                    "RATE_FEED_URL is not set; deposits will be pinned "
                    f"at the fallback rate of {self.fallback_rate_bps} bps"
                )
        return self


# Global settings instance
settings = Settings()
