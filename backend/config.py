"""
Configuration management for Artemis Tugas API
"""
from datetime import timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import structlog

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """Application settings, read from the environment and .env"""

    # API Configuration
    api_title: str = "Artemis Tugas API"
    api_version: str = "1.0.0"
    api_description: str = "Assignment tracking and study assistant API for ArtemisSMEA"

    # Server Configuration
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False

    # Security
    secret_key: str = "local-development-key"
    token_algorithm: str = "HS256"
    token_expiry_hours: int = 24
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Chat assistant configuration
    openai_api_key: Optional[str] = None
    chat_model: str = "gpt-4o-mini"
    chat_temperature: float = 0.7
    chat_max_tokens: int = 1000
    chat_timeout: float = 30.0
    chat_max_message_length: int = 2000
    # Deadlines in chat prompts are shown in this zone
    display_timezone: str = "UTC"

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./artemis.db"
    database_echo: bool = False

    # Logging Configuration
    log_level: str = "INFO"

    @field_validator('openai_api_key')
    @classmethod
    def validate_openai_key(cls, v):
        if v is not None and (not v.strip() or v.startswith('#')):
            return None
        return v

    @field_validator('chat_timeout')
    @classmethod
    def validate_chat_timeout(cls, v):
        if v <= 0:
            raise ValueError('chat_timeout must be positive')
        return v

    @field_validator('display_timezone')
    @classmethod
    def validate_display_timezone(cls, v):
        if v.upper() != "UTC":
            try:
                ZoneInfo(v)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"unknown timezone: {v}")
        return v

    @property
    def display_tzinfo(self) -> tzinfo:
        if self.display_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.display_timezone)

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_prefix": "",
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def validate_required_settings():
    """Validate that all required settings are present"""
    settings = get_settings()
    errors = []

    if not settings.secret_key:
        errors.append("SECRET_KEY must not be empty")

    # The chat endpoint answers with 502 until a key is configured
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set, chat assistant requests will fail")

    if errors:
        raise ValueError(f"Configuration errors: {', '.join(errors)}")

    return True
