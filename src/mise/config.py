"""
Mise - Configuration and settings.

Settings are read from the environment (or a local .env file) on first use,
so importing a module never requires credentials.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.

    OpenAI and Supabase credentials plus the knobs the safety core reads.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str
    mise_chat_model: str = "gpt-4o-mini"

    # Supabase
    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: str

    # Application
    mise_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Dev user for the CLI
    dev_user_id: str = "00000000-0000-0000-0000-000000000002"

    # Cooking sessions older than this are not offered for resume
    session_expire_hours: int = 24

    # Context limits
    history_limit: int = 10

    # Custom recipe generations per user per calendar month
    ai_monthly_generation_limit: int = 120


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience singleton - lazy loaded
class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: Settings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
