"""
Configuration Settings

Centralized configuration management using environment variables.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = Field(default="dev", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Terra Configuration
    terra_signing_secret: str = Field(
        default="",
        alias="TERRA_SIGNING_SECRET",
        description="Shared HMAC secret used by Terra to sign webhooks",
    )

    # Supabase Configuration
    supabase_url: str = Field(
        ...,
        alias="SUPABASE_URL",
        description="Supabase project URL",
    )
    supabase_service_key_secret: str = Field(
        ...,
        alias="SUPABASE_SERVICE_KEY_SECRET",
        description="AWS Secrets Manager secret name for the Supabase service-role key",
    )

    # AWS Configuration
    aws_region: Optional[str] = Field(
        default=None,
        alias="AWS_REGION"
    )

    # Operational Settings
    request_timeout: int = Field(
        default=10,
        alias="REQUEST_TIMEOUT",
        description="HTTP request timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        alias="MAX_RETRIES",
        description="Maximum number of retry attempts for failed requests",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )


def get_settings() -> Settings:
    """
    Get application settings instance.

    Returns:
        Settings instance with values loaded from environment
    """
    return Settings()
