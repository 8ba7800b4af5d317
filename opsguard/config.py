"""
OPSGUARD Configuration

Environment-based settings for the authorization core.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Authorization core settings loaded from environment variables."""

    # Application
    APP_NAME: str = "OPSGUARD"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Step-up / elevation
    DEFAULT_ELEVATION_MINUTES: int = 15
    AUDIT_ABANDONED_CHALLENGES: bool = True

    # Audit
    AUDIT_SANITIZE_FIELDS: list[str] = [
        "password",
        "password_hash",
        "secret",
        "token",
        "step_up_token",
        "api_key",
        "private_key",
        "credit_card",
    ]

    # Console backend (identity, step-up, audit sink)
    BACKEND_URL: str = "http://localhost:8000/api"
    BACKEND_TIMEOUT_SECONDS: float = 10.0
    BACKEND_API_KEY: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "OPSGUARD_"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
