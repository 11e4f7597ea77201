"""
Application settings using Pydantic.

Provides environment-based configuration loading with STACKDEPLOY_ prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STACKDEPLOY_",
    )

    # Terraform CLI
    terraform_binary: str = "terraform"
    output_dir: str = "cdktf.out"

    # Approval gate (explicit opt-in only)
    auto_approve: bool = False

    # Terraform Cloud / Enterprise
    terraform_cloud_hostname: str = "app.terraform.io"
    terraform_cloud_token: str | None = None
    credentials_file: Path = Path("~/.terraform.d/credentials.tfrc.json")

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3

    # Remote run polling
    remote_poll_interval: float = 2.0
    remote_poll_timeout: float = 3600.0

    # Logging
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("remote_poll_interval", "remote_poll_timeout", "http_timeout")
    @classmethod
    def non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
