# python
# app/core/config.py
"""Configuration settings for the Messenger Sync service.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Messenger Sync API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key for JWT verification",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    verify_token_signature: bool = Field(
        default=False, description="Verify bearer token signatures with secret_key"
    )

    # ===== Tree Store (Database) Settings =====
    database_url: str = Field(
        default="sqlite+aiosqlite:///./messenger.db", description="Tree store connection URL"
    )
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Messenger Settings =====
    message_page_size: int = Field(
        default=50, description="Messages fetched when a chat becomes active"
    )
    search_result_limit: int = Field(default=200, description="Maximum search hits returned")
    deleted_message_text: str = Field(
        default="This message was deleted", description="Tombstone text for deleted messages"
    )
    default_company_id: str = Field(
        default="default", description="Company used when no scope is supplied"
    )
    max_attachment_size: int = Field(
        default=26214400, description="Maximum attachment size in bytes (25MB)"
    )
    attachment_storage_dir: str = Field(
        default="./attachments", description="Directory for locally stored attachments"
    )
    attachment_base_url: str = Field(
        default="/attachments", description="URL prefix attachments are served under"
    )

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            return lv
        return v

    @field_validator("message_page_size")
    @classmethod
    def validate_page_size(cls, v):
        if v < 1 or v > 500:
            raise ValueError("Message page size must be between 1 and 500")
        return v

    @field_validator("max_attachment_size")
    @classmethod
    def validate_attachment_size(cls, v):
        if v > 100 * 1024 * 1024:
            raise ValueError("Maximum attachment size cannot exceed 100MB")
        return v

    @model_validator(mode="after")
    def set_computed_fields(self):
        if not self.test_database_url and self.is_sqlite:
            self.test_database_url = "sqlite+aiosqlite:///./test.db"
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.is_production and not settings.verify_token_signature:
            errors.append("VERIFY_TOKEN_SIGNATURE must be enabled in production")
        if settings.is_production and settings.is_sqlite:
            errors.append("SQLite tree store is not supported in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "token_verification": settings.verify_token_signature,
            "store_backend": "sqlite" if settings.is_sqlite else "server",
            "environment": settings.environment,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "message_page_size": settings.message_page_size,
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
]
