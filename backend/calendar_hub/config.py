"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "student-calendar-hub"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # comma-separated

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_KEY: str  # anon/public key
    SUPABASE_SERVICE_KEY: str = ""  # service_role key (for admin ops)

    # ── Security ─────────────────────────────────────────
    ENCRYPTION_SECRET_KEY: str  # Fernet key for encrypting calendar credentials
    JWT_SECRET_KEY: str  # JWT signing key (shared with the identity service)
    JWT_ALGORITHM: str = "HS256"

    # ── Calendar ─────────────────────────────────────────
    CALENDAR_TIMEZONE: str = "UTC"  # timezone sent to providers with timed events
    SYNC_EVENT_DURATION_MINUTES: int = 60  # events only carry a start time

    # ── Google Calendar ──────────────────────────────────
    GOOGLE_CALENDAR_API_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_OAUTH_REVOKE_URL: str = "https://oauth2.googleapis.com/revoke"

    # ── Sync (connector boundary) ────────────────────────
    SYNC_HTTP_TIMEOUT: float = 20.0  # seconds
    SYNC_MAX_ATTEMPTS: int = 3
    SYNC_BACKOFF_BASE_SECONDS: float = 0.5
    SYNC_BACKOFF_MAX_SECONDS: float = 8.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
