# =============================================================================
# app/config.py - Application Settings
# =============================================================================
# This module loads configuration from environment variables using pydantic-settings.
# It provides a single Settings class with all configuration values.
#
# Usage:
#   from app.config import settings
#   print(settings.SUPABASE_URL)
#
# Environment variables are loaded from:
# 1. System environment variables
# 2. .env file in project root (if exists)
#
# The Settings class validates all values at startup, catching configuration
# errors early rather than at runtime.
# =============================================================================

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings to:
    - Automatically load from .env file
    - Validate types and constraints
    - Provide sensible defaults for development

    All settings are accessed via the global `settings` instance.
    """

    # -------------------------------------------------------------------------
    # Supabase Configuration
    # -------------------------------------------------------------------------
    # These are required - app won't start without them

    SUPABASE_URL: str = Field(
        ...,  # ... means required (no default)
        description="Supabase project URL (e.g., https://xxx.supabase.co)"
    )

    SUPABASE_ANON_KEY: str = Field(
        ...,
        description="Supabase anon/public API key"
    )

    SUPABASE_SERVICE_KEY: str = Field(
        ...,
        description="Supabase service_role key (bypasses RLS)"
    )

    SUPABASE_JWT_SECRET: str = Field(
        default="super-secret-jwt-token-with-at-least-32-characters",
        description="Legacy HS256 secret used to verify Supabase access tokens"
    )

    # -------------------------------------------------------------------------
    # Redis Configuration (Celery broker + real-time pub/sub)
    # -------------------------------------------------------------------------

    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for Celery broker and WebSocket fan-out"
    )

    # -------------------------------------------------------------------------
    # Messaging Settings
    # -------------------------------------------------------------------------

    MESSAGE_MAX_LENGTH: int = Field(
        default=5000,
        ge=1,
        le=100_000,
        description="Maximum length of a single message text"
    )

    # -------------------------------------------------------------------------
    # Delivery Settings
    # -------------------------------------------------------------------------
    # Cadences advertised to clients and used by the WebSocket heartbeat

    MESSAGE_POLL_INTERVAL_SECONDS: float = Field(
        default=10.0,
        gt=0,
        description="Polling cadence for message threads when push is unavailable"
    )

    NOTIFICATION_POLL_INTERVAL_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Polling cadence for notifications when push is unavailable"
    )

    HEARTBEAT_INTERVAL_SECONDS: float = Field(
        default=15.0,
        gt=0,
        description="How often the server sends a heartbeat frame on each WebSocket"
    )

    HEARTBEAT_TIMEOUT_SECONDS: float = Field(
        default=45.0,
        gt=0,
        description="Silence after which a client treats the push channel as dead"
    )

    REALTIME_RECONNECT_BASE_SECONDS: float = Field(
        default=1.0,
        gt=0,
        description="First delay before the Redis listener resubscribes after an error"
    )

    REALTIME_RECONNECT_MAX_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for the Redis listener reconnect delay"
    )

    # -------------------------------------------------------------------------
    # Notification Fanout Settings
    # -------------------------------------------------------------------------

    NOTIFY_ADMINS_ON_MESSAGE: bool = Field(
        default=False,
        description="Also notify admins of every new message (off: monitoring is pull-based)"
    )

    FANOUT_MAX_RETRIES: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Retries for a single failed notification write"
    )

    FANOUT_RETRY_BACKOFF_SECONDS: float = Field(
        default=2.0,
        gt=0,
        description="Base delay for exponential backoff between notification retries"
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (verbose logging, auto-reload)"
    )

    API_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the API server to"
    )

    API_PORT: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for the API server"
    )

    # CORS origins (comma-separated string that gets parsed)
    CORS_ORIGINS: str = Field(
        default="http://localhost:8080",
        description="Allowed CORS origins (comma-separated)"
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------

    model_config = SettingsConfigDict(
        # Load from .env file in project root
        env_file=".env",
        env_file_encoding="utf-8",
        # Don't fail if .env doesn't exist (useful for production where
        # env vars are set directly)
        env_ignore_empty=True,
        # Case-sensitive environment variable names
        case_sensitive=True,
        # The .env file is shared with the frontend (VITE_* keys)
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS_ORIGINS string into a list.

        Example: "http://localhost:8080, https://sharkbid.app" -> ["http://localhost:8080", "https://sharkbid.app"]
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached Settings instance.

    Using lru_cache ensures we only parse .env and validate once,
    not on every access.

    Returns:
        Settings: The application settings instance
    """
    return Settings()


# Global settings instance for easy importing
# Usage: from app.config import settings
settings = get_settings()
