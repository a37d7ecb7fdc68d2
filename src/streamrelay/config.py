"""Configuration management."""

from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Upstream model provider (OpenAI-compatible)
    manus_api_key: str = ""
    manus_api_base_url: str = "https://api.manus.ai/v1"
    provider_timeout: float = 120.0

    # Conversation storage: "memory" or "postgres"
    storage_backend: Literal["memory", "postgres"] = "memory"

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "streamrelay"
    db_user: str = "streamrelay"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Conversation retention
    prune_max_age_days: int = 30
    prune_interval_seconds: int = 3600  # 0 disables the background prune

    # Identity fallback when no X-User-ID header is present
    default_user_id: str = "default-user"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    frontend_url: str = "http://localhost:3000"
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
