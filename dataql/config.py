"""Configuration management for DataQL."""

import os
from typing import Optional

import toml
from pydantic import BaseModel, Field, field_validator


def default_cache_dir() -> str:
    """Get default cache directory."""
    return os.path.join("~", ".dataql", "cache")


class CacheConfig(BaseModel):
    """Configuration for the import cache."""

    enabled: bool = Field(
        default=True,
        description="Reuse previously imported DuckDB databases",
    )
    cache_dir: str = Field(
        default=default_cache_dir(),
        validate_default=True,
        description="Directory holding <key>.duckdb and <key>.json files",
    )
    lock_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Seconds to wait for a per-key write lock",
    )

    @field_validator("cache_dir")
    @classmethod
    def expand_cache_dir(cls, v):
        """Expand user paths and environment variables."""
        return os.path.expanduser(os.path.expandvars(v))


class RemoteConfig(BaseModel):
    """Configuration for stdin, URL and object-store sources."""

    timeout_seconds: int = Field(default=300, ge=1, le=3600)
    chunk_size: int = Field(default=64 * 1024, ge=1024)
    s3_region: Optional[str] = Field(
        default=None,
        description="Region for the S3 client (default: ambient AWS config)",
    )
    stdin_format: str = Field(
        default="csv",
        description="Format of data piped on stdin with the source \"-\"",
    )


class QueueConfig(BaseModel):
    """Configuration for message-queue peeking."""

    max_messages: int = Field(default=10, ge=1, le=10000)


class Config(BaseModel):
    """Main configuration class."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, searches standard locations.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        search_paths = [
            os.path.expanduser("~/.config/dataql/config.toml"),
            "dataql.toml",
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        # Return default path even if it doesn't exist
        return search_paths[0]

    @property
    def config(self) -> Config:
        """Get configuration, loading if necessary."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        """Load configuration from TOML file."""
        if not os.path.exists(self.config_path):
            return Config()

        try:
            with open(self.config_path, "r") as f:
                config_data = toml.load(f)
            return Config(**config_data)
        except (toml.TomlDecodeError, ValueError) as e:
            raise ValueError(f"Invalid configuration file {self.config_path}: {e}")

    def reload(self):
        """Reload configuration."""
        self._config = None


# Global configuration manager instance
config_manager = ConfigManager()
