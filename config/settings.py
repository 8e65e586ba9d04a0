"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Auth backends
BACKEND_LOCAL = "local"
BACKEND_SUPABASE = "supabase"

# Subscription policy
TRIAL_SUBSCRIPTION_TYPE = "trial"
DEFAULT_DISPLAY_NAME = "User"
EXPIRING_SOON_DAYS = 2


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Backend selection
    auth_backend: str = Field(default=BACKEND_LOCAL, alias="AUTH_BACKEND")

    # Local identity provider
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_ttl_minutes: int = Field(default=60, alias="JWT_TTL_MINUTES")

    # Supabase (hosted backend-as-a-service)
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_service_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./trialgate.db", alias="DATABASE_URL")

    # Subscription gating
    trial_days: int = Field(default=7, alias="TRIAL_DAYS")
    status_refresh_seconds: float = Field(default=60.0, alias="STATUS_REFRESH_SECONDS")
    session_revalidate_seconds: float = Field(default=300.0, alias="SESSION_REVALIDATE_SECONDS")
    subscription_fail_open: bool = Field(default=True, alias="SUBSCRIPTION_FAIL_OPEN")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
