"""Rolegate configuration using Pydantic Settings.

Both the API server and the Discord bot build the verification engine from
the same settings, so they live in one place.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # Google / YouTube OAuth
    google_client_id: str = Field(default="", description="Google OAuth Client ID")
    google_client_secret: str = Field(default="", description="Google OAuth Client Secret")
    youtube_api_key: str = Field(default="", description="YouTube Data API key (public lookups)")

    # Twitch OAuth
    twitch_client_id: str = Field(default="", description="Twitch OAuth Client ID")
    twitch_client_secret: str = Field(default="", description="Twitch OAuth Client Secret")

    # Discord
    discord_bot_token: str = Field(default="", description="Discord bot token")
    discord_guild_id: str = Field(default="", description="Guild for fast slash-command sync")

    # Server
    api_url: str = Field(default="http://localhost:8000", description="Public API base URL")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Verification engine
    verification_timeout: float = Field(
        default=5.0, gt=0, description="Per-check platform timeout in seconds"
    )
    token_sweep_interval: int = Field(
        default=3600, gt=0, description="Expired credential sweep period in seconds"
    )
    oauth_state_ttl: int = Field(default=600, gt=0, description="Pending OAuth link TTL")
    enable_token_janitor: bool = Field(default=True, description="Run the credential sweep")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @property
    def youtube_redirect_uri(self) -> str:
        return f"{self.api_url.rstrip('/')}/auth/youtube/callback"

    @property
    def twitch_redirect_uri(self) -> str:
        return f"{self.api_url.rstrip('/')}/auth/twitch/callback"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
