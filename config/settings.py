"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
The weekly pickup cycle (pickup weekday, edit deadline) is configured here
once per deployment.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.schedule import Weekday, WeeklyCycleConfig


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # STORE BACKEND
    # ===================
    store_backend: str = Field(
        default="memory",
        pattern="^(memory|supabase)$",
        description="Backing store for orders, drafts and profiles"
    )
    supabase_url: Optional[str] = Field(
        None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        None,
        description="Supabase anon/public key"
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for a single remote store call"
    )

    # ===================
    # PICKUP CYCLE
    # ===================
    pickup_weekday: Weekday = Field(
        default=Weekday.THURSDAY,
        description="ISO weekday orders are picked up (1=Monday)"
    )
    deadline_weekday: Weekday = Field(
        default=Weekday.TUESDAY,
        description="ISO weekday of the edit deadline"
    )
    deadline_hour: int = Field(
        default=23,
        ge=0,
        le=23,
        description="Hour of the edit deadline"
    )
    deadline_minute: int = Field(
        default=59,
        ge=0,
        le=59,
        description="Minute of the edit deadline"
    )
    timezone: str = Field(
        default="Europe/Berlin",
        description="IANA zone used to derive pickup weekdays and date keys"
    )
    available_dates_count: int = Field(
        default=5,
        ge=1,
        le=52,
        description="How many upcoming pickup dates are offered"
    )
    seller_id: str = Field(
        default="default-seller",
        min_length=1,
        description="Seller/tenant the orders belong to"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject zone names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def cycle_config(self) -> WeeklyCycleConfig:
        """Weekly pickup cycle built from the schedule settings."""
        return WeeklyCycleConfig(
            pickup_weekday=self.pickup_weekday,
            deadline_weekday=self.deadline_weekday,
            deadline_hour=self.deadline_hour,
            deadline_minute=self.deadline_minute,
        )

    @property
    def zone(self) -> ZoneInfo:
        """Configured buyer zone."""
        return ZoneInfo(self.timezone)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
