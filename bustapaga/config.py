"""Application configuration via pydantic-settings.

All secrets are loaded from environment variables (.env file).
Settings are organized into logical groups and composed into a single Settings object.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiSettings(BaseSettings):
    """Google Gemini REST API configuration."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="GEMINI_", extra="ignore")

    api_key: str = Field(default="", description="Gemini API key (x-goog-api-key)")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL",
    )
    model: str = Field(default="gemini-2.5-flash", description="Model used for every call")
    timeout: int = Field(default=120, description="Request timeout in seconds (analysis included)")
    connect_timeout: int = Field(default=10, description="TCP connect timeout in seconds")
    analysis_temperature: float = Field(default=0.1, description="Sampling temperature for extraction")
    chat_temperature: float = Field(default=0.7, description="Sampling temperature for chat/narratives")


class GatewaySettings(BaseSettings):
    """Behaviour of the AI gateway adapters."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="GATEWAY_", extra="ignore")

    provider: str = Field(default="gemini", description="'gemini' or 'mock' (canned responses, dev only)")
    chat_mode: str = Field(default="stream", description="'stream' (token stream) or 'single' (one completion)")
    tax_tables_path: str = Field(
        default="",
        description="Text file with the municipal surtax tables injected into chat on request",
    )
    normalize_images: bool = Field(default=True, description="EXIF-rotate and downscale uploaded images")
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, description="Largest accepted upload")

    @field_validator("chat_mode")
    @classmethod
    def validate_chat_mode(cls, v: str) -> str:
        """Ensure chat mode is one of the supported interaction modes."""
        lower = v.lower()
        if lower not in {"stream", "single"}:
            msg = f"Invalid chat mode: {v}. Must be 'stream' or 'single'"
            raise ValueError(msg)
        return lower

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"gemini", "mock"}:
            msg = f"Invalid provider: {v}. Must be 'gemini' or 'mock'"
            raise ValueError(msg)
        return lower


class StorageSettings(BaseSettings):
    """Local archive database."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./bustapaga.db",
        description="Async SQLAlchemy connection string",
    )


class SecuritySettings(BaseSettings):
    """Encryption at rest."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    encryption_key: str = Field(
        default="",
        description="32-byte AES key, base64 encoded",
    )
    encrypt_payslips: bool = Field(default=True, description="Encrypt stored payslip payloads")


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.gemini.model
        settings.gateway.chat_mode
        settings.storage.database_url
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="DEBUG")

    # Composed settings (loaded from same .env)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper


# Module-level singleton: import this wherever settings are needed.
settings = Settings()
