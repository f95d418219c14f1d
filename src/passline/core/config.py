"""Configuration types with environment variable support.

All settings can be configured via environment variables with the PASSLINE_ prefix.
Example: PASSLINE_BASE_URL=https://auth.example.com points the client at a server.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class ClientConfig(BaseModel):
    """Effective settings for one CLI invocation.

    Built from a config file section plus command line overrides, so it is a
    plain model rather than a settings class.
    """

    base_url: str = "http://localhost:8080"
    session_cookie: str = "connect.sid"
    store_path: str = "passline.json"
    connect_timeout: float = 40.0
    read_timeout: float | None = 30.0
    write_timeout: float = 40.0
    pool_timeout: float = 5.0
    max_connections: int = Field(default=10, ge=1)
    max_keepalive: int = Field(default=5, ge=0)
    verify_tls: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class TimeoutConfig(BaseSettings):
    """HTTP timeout configuration for calls to the authentication server."""

    model_config = SettingsConfigDict(
        env_prefix="PASSLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    connect_timeout: float = Field(
        default=40.0,
        description="Connection timeout (seconds).",
    )
    read_timeout: float | None = Field(
        default=30.0,
        description="Read timeout (seconds). None for indefinite.",
    )
    write_timeout: float = Field(
        default=40.0,
        description="Write timeout (seconds).",
    )
    pool_timeout: float = Field(
        default=5.0,
        description="Timeout waiting for a pooled connection (seconds).",
    )


class ApiConfig(BaseSettings):
    """Authentication server endpoint configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PASSLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the relying-party server.",
    )
    session_cookie: str = Field(
        default="connect.sid",
        description="Name of the cookie carrying the rotating session id.",
    )
    max_connections: int = Field(
        default=10,
        ge=1,
        description="Maximum concurrent connections to the server.",
    )
    max_keepalive: int = Field(
        default=5,
        ge=0,
        description="Maximum keepalive connections in pool.",
    )
    verify_tls: bool = Field(
        default=True,
        description="Verify the server TLS certificate.",
    )

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class StorageConfig(BaseSettings):
    """Local persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PASSLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    store_path: str = Field(
        default="passline.json",
        description="Path of the JSON file holding username, session and credentials.",
    )
    subscriber_buffer: int = Field(
        default=16,
        ge=1,
        description="Per-subscriber buffer size for state and credential updates.",
    )


class PasslineConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.api.base_url)
        print(config.timeouts.read_timeout)
    """

    model_config = SettingsConfigDict(
        env_prefix="PASSLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def timeouts(self) -> TimeoutConfig:
        """Get timeout configuration."""
        return TimeoutConfig()

    @property
    def api(self) -> ApiConfig:
        """Get server endpoint configuration."""
        return ApiConfig()

    @property
    def storage(self) -> StorageConfig:
        """Get storage configuration."""
        return StorageConfig()

    def to_display_dict(self) -> dict[str, Any]:
        """Export configuration grouped by section for display."""
        return {
            "api": self.api.model_dump(),
            "timeouts": self.timeouts.model_dump(),
            "storage": self.storage.model_dump(),
        }

    def to_client_config(self, overrides: dict[str, Any] | None = None) -> ClientConfig:
        """Build a ClientConfig from the environment plus explicit overrides."""
        values: dict[str, Any] = {
            "base_url": self.api.base_url,
            "session_cookie": self.api.session_cookie,
            "verify_tls": self.api.verify_tls,
            "store_path": self.storage.store_path,
            "connect_timeout": self.timeouts.connect_timeout,
            "read_timeout": self.timeouts.read_timeout,
            "write_timeout": self.timeouts.write_timeout,
            "pool_timeout": self.timeouts.pool_timeout,
            "max_connections": self.api.max_connections,
            "max_keepalive": self.api.max_keepalive,
        }
        if overrides:
            values.update({k: v for k, v in overrides.items() if v is not None})
        return ClientConfig(**values)


_config: PasslineConfig | None = None


def get_config() -> PasslineConfig:
    """Get the global configuration instance.

    Configuration is loaded from environment variables on first access.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = PasslineConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
