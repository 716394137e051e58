# app/core/config.py
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RatePolicyConfig(BaseModel):
    """A named admission policy: at most `max_requests` per `window_seconds`."""

    max_requests: int = Field(gt=0)
    window_seconds: int = Field(gt=0)


DEFAULT_RATE_POLICIES: dict[str, RatePolicyConfig] = {
    "api": RatePolicyConfig(max_requests=100, window_seconds=15 * 60),
    "strict": RatePolicyConfig(max_requests=20, window_seconds=5 * 60),
    "orders": RatePolicyConfig(max_requests=10, window_seconds=60),
    "tracking": RatePolicyConfig(max_requests=120, window_seconds=60),
    "tier_basic": RatePolicyConfig(max_requests=100, window_seconds=15 * 60),
    "tier_premium": RatePolicyConfig(max_requests=500, window_seconds=15 * 60),
    "tier_enterprise": RatePolicyConfig(max_requests=2000, window_seconds=15 * 60),
}


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (driver/vehicle registry access)
      - REDIS_URL (shared rate-limit counters; unset => local counters only)
      - RATE_LIMIT_POLICIES (JSON, overrides entries of the default table)
    """

    PROJECT_NAME: str = "BuildMate Delivery API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = True

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Rate admission gate
    REDIS_URL: str | None = None
    RATE_LIMIT_REDIS_TIMEOUT: float = 0.25
    RATE_LIMIT_FALLBACK_ENABLED: bool = True
    RATE_LIMIT_POLICIES: dict[str, RatePolicyConfig] = Field(default_factory=dict)

    # Placeholder position served before the first ping arrives
    DEFAULT_TRACKING_LATITUDE: float = 25.276987
    DEFAULT_TRACKING_LONGITUDE: float = 55.296249

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
        "http://localhost:19006",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def rate_policies(self) -> dict[str, RatePolicyConfig]:
        """Default policy table with any configured overrides applied."""
        return {**DEFAULT_RATE_POLICIES, **self.RATE_LIMIT_POLICIES}


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
