"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database - SQLite for local dev, PostgreSQL in production
    database_url: str = "sqlite:///./data/booking_engine.db"

    # Redis - optional, shared rate-limit storage for multi-instance deployments
    redis_url: Optional[str] = None

    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Business calendar: local dates (birthdays, shift dates) are taken in this zone
    timezone: str = "Asia/Bishkek"

    # Booking lifecycle
    hold_ttl_minutes: int = 15
    max_booking_duration_minutes: int = 24 * 60

    # Promotions
    birthday_window_days: int = 3

    # Shift settlement defaults (used when staff has no explicit split)
    default_percent_master: float = 60.0
    default_percent_salon: float = 40.0

    # Ratings
    default_rating: float = 50.0
    rating_default_window_days: int = 30
    rating_range_chunk_days_max: int = 31

    # Notifications - best-effort webhook, disabled when empty
    notify_webhook_url: Optional[str] = None
    notify_timeout_seconds: float = 5.0

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: Optional[str] = None
    rate_limit_public: str = "10/minute"
    rate_limit_normal: str = "30/minute"
    rate_limit_critical: str = "5/minute"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v

    @field_validator("hold_ttl_minutes", "birthday_window_days")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def validate_default_split(self) -> "Settings":
        """The default master/salon split has to cover the whole net amount."""
        if abs(self.default_percent_master + self.default_percent_salon - 100) > 0.01:
            raise ValueError(
                "DEFAULT_PERCENT_MASTER + DEFAULT_PERCENT_SALON must equal 100"
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def limiter_storage_uri(self) -> str:
        """Storage backend for rate-limit counters.

        An explicit RATE_LIMIT_STORAGE_URI wins; otherwise counters go to Redis
        when configured so every instance shares them, and to process memory
        for single-instance deployments.
        """
        if self.rate_limit_storage_uri:
            return self.rate_limit_storage_uri
        if self.redis_url:
            return self.redis_url
        return "memory://"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
