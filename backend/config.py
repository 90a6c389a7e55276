"""
Configuration management for the tutor backend.

Uses Pydantic Settings for environment variable management and validation.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Keys
    google_api_key: str = ""

    # Application
    environment: Literal["development", "staging", "production"] = "development"
    backend_port: int = 8000

    # CORS
    cors_origins: list[str] = ["*"]

    # LLM Model Names (Google Gemini)
    vision_model: str = "gemini-2.0-flash"  # used when a photo is attached
    text_model: str = "gemini-2.0-flash"
    temperature: float = 0.3

    # Prompt variants (see prompts.py)
    explanation_prompt_variant: str = "bilingual"
    solution_prompt_variant: str = "default"
    telugu_prompt_variant: str = "tanglish"

    # Rate limiting (per tutoring session)
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_requests: int = 10
    rate_limit_window: int = 60

    # Sessions
    session_idle_timeout: int = 3600  # seconds without activity; 0 keeps sessions forever

    # Media capture
    camera_index: int = 0
    jpeg_quality: int = 92

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
