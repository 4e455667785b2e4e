"""Centralized settings for the chat presence service.

Uses pydantic-settings to load from environment variables (prefixed CHAT_)
with defaults suitable for local development.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Chat service settings loaded from environment variables."""

    # --- Server ---
    host: str = "0.0.0.0"
    port: int = 5001
    cors_origins: str = "http://localhost:5173"

    # --- Database ---
    database_url: str = "sqlite:///./chat.db"
    use_database: bool = False

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Realtime ---
    suppress_redundant_presence: bool = True
    replaced_close_code: int = 4000
    image_placeholder: str = "Image"
    audio_placeholder: str = "Audio"

    model_config = {
        "env_prefix": "CHAT_",
        "env_file": ".env",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
