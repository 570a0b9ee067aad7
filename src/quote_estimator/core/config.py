# QuoteCore - Tenant Quote Re-estimation Pipeline
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings with Doppler integration."""

from beartype import beartype
from cryptography.fernet import Fernet
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_file=None,  # We use Doppler, not .env files
        env_file_encoding="utf-8",
        frozen=True,  # Immutable settings
        validate_default=True,
        extra="forbid",
    )

    # Database
    database_url: str = Field(
        default="postgresql://localhost:5432/quotes",
        description="PostgreSQL connection URL",
        min_length=1,
    )
    database_pool_min: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Minimum database pool size",
    )
    database_pool_max: int = Field(
        default=10,
        ge=2,
        le=100,
        description="Maximum database pool size",
    )
    database_pool_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Connection acquisition timeout in seconds",
    )
    database_command_timeout: float = Field(
        default=30.0,
        ge=5.0,
        le=300.0,
        description="Query execution timeout in seconds",
    )

    api_env: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Root log level",
    )

    # Inference provider (platform "grace" credential)
    openai_api_key: SecretStr | None = Field(
        default=None,
        description="Platform-owned OpenAI API key used as the grace credential",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for the OpenAI-compatible API base URL",
    )
    inference_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for the estimator call",
    )

    # Tenant secrets
    encryption_key: SecretStr | None = Field(
        default=None,
        description="Fernet key used to decrypt tenant-owned API keys",
    )

    # Vision content bounds
    vision_max_images: int = Field(
        default=6,
        ge=1,
        le=20,
        description="Maximum number of images sent to the estimator",
    )
    image_fetch_timeout_seconds: float = Field(
        default=12.0,
        ge=1.0,
        le=60.0,
        description="Per-image fetch timeout in seconds",
    )
    image_max_bytes: int = Field(
        default=8 * 1024 * 1024,
        ge=1024,
        le=64 * 1024 * 1024,
        description="Maximum size of an inlined image in bytes",
    )

    # Notes context
    notes_max_chars: int = Field(
        default=18_000,
        ge=100,
        le=200_000,
        description="Character budget for the internal notes context",
    )
    notes_default_limit: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Default number of most-recent notes considered",
    )

    # Versioning
    version_write_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts of the atomic increment-and-insert unit on conflict",
    )

    @field_validator("database_pool_max")
    @classmethod
    def validate_pool_sizes(cls: type["Settings"], v: int, info: ValidationInfo) -> int:
        """Ensure pool max is greater than pool min."""
        if "database_pool_min" in info.data:
            min_size = info.data["database_pool_min"]
            if v < min_size:
                raise ValueError(
                    f"database_pool_max ({v}) must be >= database_pool_min ({min_size})"
                )
        return v

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(
        cls: type["Settings"], v: SecretStr | None
    ) -> SecretStr | None:
        """Reject keys Fernet cannot use."""
        if v is not None:
            try:
                Fernet(v.get_secret_value().encode())
            except ValueError as e:
                raise ValueError("encryption_key must be a valid Fernet key") from e
        return v

    @property
    @beartype
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.api_env == "production"


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
