from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings for the places discovery service."""

    # Local promotion/event store
    database_url: str = "postgresql+psycopg://pd:pd@localhost:5432/pd"

    # Google Places (New) - the key must be configured per environment
    google_maps_api_key: str = ""
    google_places_timeout_s: float = 15.0

    # Cursor state storage; redis is used when a URL is configured
    redis_url: Optional[str] = None
    cursor_ttl_sec: int = 900
    cursor_key_prefix: str = "places:discovery:cursor:"
    cursor_lock_ttl_ms: int = 8000
    memory_cursor_max_entries: int = 2000

    # Environment
    environment: str = "development"

    # Search / config cache
    search_streams_config: str = "config/search_streams.yml"
    config_cache_ttl_s: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
