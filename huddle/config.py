"""Configuration loading for the Huddle collaboration service.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support. Every field maps to an upper-case environment
    variable of the same name (``STORE_BACKEND``, ``SERVER_PORT``, ...).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store configuration
    store_backend: Literal["memory", "sqlite"] = Field(
        default="sqlite",
        description="Document store backend type",
    )
    store_sqlite_path: str = Field(
        default="./data/huddle.db",
        description="SQLite database file path",
    )

    # User directory configuration
    user_directory_backend: Literal["memory", "http"] = Field(
        default="memory",
        description="User directory backend type",
    )
    user_service_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the remote user service",
    )
    user_service_token: str = Field(
        default="",
        description="Bearer token for the remote user service",
    )
    user_service_timeout_seconds: float = Field(
        default=5.0,
        description="Request timeout for the remote user service",
    )
    user_seed_path: str = Field(
        default="",
        description="Optional JSON file of users to load into the in-memory directory",
    )

    # HTTP server configuration
    server_host: str = Field(
        default="0.0.0.0",
        description="Host to listen on",
    )
    server_port: int = Field(
        default=8080,
        description="Port to listen on",
    )
    api_key: str = Field(
        default="",
        description="API key for request authentication (required for production)",
    )
    require_auth: bool = Field(
        default=False,
        description="Require API key authentication for all endpoints except /health",
    )
    websocket_heartbeat_seconds: float = Field(
        default=30.0,
        description="Ping interval for live WebSocket connections",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator("server_port")
    @classmethod
    def validate_server_port(cls, v: int) -> int:
        """Ensure server port is in valid range."""
        if v <= 0 or v > 65535:
            raise ValueError("server_port must be between 1 and 65535")
        return v

    @field_validator("websocket_heartbeat_seconds", "user_service_timeout_seconds")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Ensure intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        """Accept log levels in any case."""
        return v.upper() if isinstance(v, str) else v


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
