"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Agent Marketplace"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/marketplace.db"

    # Matching
    MATCH_EXPIRY_DAYS: int = 7  # expires_at stamped on new matches

    # Expiry sweeper bounds (out-of-range values are rejected, not clamped)
    EXPIRY_DEFAULT_TIMEOUT_HOURS: int = 168
    EXPIRY_MIN_TIMEOUT_HOURS: int = 1
    EXPIRY_MAX_TIMEOUT_HOURS: int = 8760
    EXPIRY_DEFAULT_LIMIT: int = 100
    EXPIRY_MAX_LIMIT: int = 500

    # Free-text fields (dispute reasons, notes, descriptions)
    MAX_TEXT_LENGTH: int = 2000

    # Admin trigger for the sweeper; empty disables the endpoint
    ADMIN_SECRET: str = ""

    # Optional webhook receiving every notification
    WEBHOOK_URL: str = ""
    WEBHOOK_TIMEOUT: float = 5.0  # seconds

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    class Config:
        # Look for .env in the repository root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
