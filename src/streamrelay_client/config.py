"""Client configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings, read from STREAMRELAY_CLIENT_* environment variables."""

    # Server origin; API routes live under /api
    api_base_url: str = "http://localhost:5000"
    request_timeout: float = 120.0

    # Where JsonFileStorage keeps its state file
    data_dir: str = "~/.streamrelay"

    # Seconds between connectivity checks
    connectivity_interval: float = 15.0

    # Sent as X-User-ID when set
    user_id: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="STREAMRELAY_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global client settings instance
client_settings = ClientSettings()
