# backend/config.py
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings read from the environment (and `.env`)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Supabase
    supabase_url: str = "http://127.0.0.1:54321"
    supabase_key: str = ""

    # API
    cors_origins: list[str] = ["*"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    # Collection import
    import_max_lines: int = 5000


@lru_cache
def get_settings() -> Settings:
    return Settings()
