"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Pricing defaults here apply to
restaurants that were created without their own tax/service rates.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - relative path for local runs, override via env for server deployments
    database_url: str = "sqlite:///./data/qrdine.db"

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Pricing & billing
    # ==========================================================================
    currency: str = "INR"
    default_tax_rate: float = 18.0  # percent, applied on the pre-discount subtotal
    default_service_charge_rate: float = 5.0  # percent
    bill_number_attempts: int = 3

    # ==========================================================================
    # Ordering
    # ==========================================================================
    default_preparation_minutes: int = 15  # used when a menu item has no prep time
    min_preparation_minutes: int = 10
    cart_merge_attempts: int = 3
    quick_add_limit: int = 3

    # Real-time
    ws_max_connections_per_room: int = 1000

    @field_validator("default_tax_rate", "default_service_charge_rate")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError(f"rate must be between 0 and 100, got {v}")
        return v

    @field_validator("bill_number_attempts", "cart_merge_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("at least one attempt is required")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list, filtering localhost in production."""
        if self.cors_origins == "*":
            return ["*"]

        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

        # Filter out localhost origins in production mode
        if not self.debug:
            localhost_patterns = ["localhost", "127.0.0.1", "0.0.0.0"]
            origins = [o for o in origins if not any(p in o for p in localhost_patterns)]

        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
