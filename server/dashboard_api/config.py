"""API configuration loaded from environment variables."""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """API settings loaded from environment."""

    # API configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8082

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # SSE replay on connect
    stream_history_count: int = 10

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
