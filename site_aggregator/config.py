"""
Configuration for the site data aggregator.

Provides settings for the site database, polling behaviour,
and the built-in collectors.
"""
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Site database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SITE_DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    url: str = Field(
        default="site-data.sqlite",
        description="Path to the SQLite site database",
    )
    echo_sql: bool = Field(default=False, description="Echo SQL queries")
    busy_timeout: float = Field(
        default=30.0,
        description="Seconds a connection waits on a locked database",
    )

    @property
    def path(self) -> Path:
        """Filesystem path of the database file."""
        return Path(self.url.removeprefix("sqlite://"))

    @property
    def async_url(self) -> str:
        """Build the async SQLAlchemy URL."""
        return f"sqlite+aiosqlite:///{self.path}"


class PollingSettings(BaseSettings):
    """Source polling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AGGREGATOR_POLLING_",
        env_file=".env",
        extra="ignore",
    )

    collector_timeout: float = Field(default=10.0, description="Upper bound on one collector call (seconds)")
    stop_timeout: float = Field(default=15.0, description="Wait for a poller to stop during reconcile (seconds)")
    shutdown_grace_period: float = Field(default=10.0, description="Grace period on termination (seconds)")
    min_interval: int = Field(default=1, description="Minimum poll interval (seconds)")
    recent_readings_limit: int = Field(default=10, description="Readings returned per source by read_aggregated_data")


class CollectorSettings(BaseSettings):
    """Built-in collector configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AGGREGATOR_COLLECTOR_",
        env_file=".env",
        extra="ignore",
    )

    ping_count: int = Field(default=3, description="Echo requests sent per ping probe")
    ping_wait_seconds: float = Field(default=1.0, description="Per-reply wait passed to ping -W")
    subprocess_timeout: float = Field(default=10.0, description="Timeout for collector subprocesses")
    sleep_seconds: float = Field(default=3.0, description="Default duration for the time_sleep probe")


class AggregatorSettings(BaseSettings):
    """Main configuration for the aggregator."""

    model_config = SettingsConfigDict(
        env_prefix="AGGREGATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Site Data Aggregator")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    collectors: CollectorSettings = Field(default_factory=CollectorSettings)

    def validate_paths(self) -> List[str]:
        """
        Validate that required paths exist.

        Returns:
            List of error messages for missing paths.
        """
        errors = []

        parent = self.database.path.parent
        if not parent.exists():
            errors.append(f"Database directory not found: {parent}")

        return errors


@lru_cache()
def get_settings() -> AggregatorSettings:
    """
    Get cached aggregator settings.

    Uses LRU cache to avoid re-reading environment variables on every access.
    """
    return AggregatorSettings()
