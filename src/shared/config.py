"""Configuration management for the tool hub.

Supports an optional YAML settings file with environment variable overrides.
Configuration is loaded once and cached.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP tool server configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    cors_origin: str = Field(default="*")
    shared_secret: str = Field(default="", description="Required x-mcp-key value; empty disables the check")
    session_ttl_seconds: int = Field(default=3600, gt=0)
    allowed_hosts: str = Field(default="", description="Comma-separated Host header allow-list; empty disables the check")

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def allowed_host_list(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]


class StorageSettings(BaseSettings):
    """Persistence configuration."""
    database_url: str = Field(default="", description="Empty selects the in-memory stores")
    usage_log_path: str = Field(default="", description="JSON-lines usage log used when no database is set")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten for an async SQLAlchemy driver."""
        return normalize_database_url(self.database_url)


class NotionSettings(BaseSettings):
    """Notion OAuth client configuration."""
    client_id: str = Field(default="")
    client_secret: str = Field(default="")
    redirect_uri: str = Field(default="")
    static_token: str = Field(default="", description="Bypass OAuth with a fixed integration token")
    use_pkce: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="NOTION_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notion: NotionSettings = Field(default_factory=NotionSettings)

    model_config = SettingsConfigDict(
        env_prefix="TOOLHUB_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        return cls(**load_yaml_config(path))


def normalize_database_url(url: str) -> str:
    """Map plain PostgreSQL / SQLite URLs onto their asyncio drivers."""
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("TOOLHUB_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
