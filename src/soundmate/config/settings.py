"""Application settings loaded from environment variables.

Every group is a nested model so the env layout stays flat and predictable:

    SOUNDMATE_DATABASE__URL=postgresql+asyncpg://user:pw@db/soundmate
    SOUNDMATE_AGGREGATION__INTERVAL_SECONDS=120
    SOUNDMATE_OBSERVABILITY__LOG_JSON_FORMAT=true
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseModel):
    """General application settings."""

    name: str = "soundmate"
    environment: Literal["development", "production", "test"] = "development"
    debug: bool = False
    api_prefix: str = "/api"


class DatabaseSettings(BaseModel):
    """Persistence backend settings.

    ``backend`` picks the repository implementation once at startup:
    ``sql`` talks to SQLite/Postgres through SQLAlchemy, ``memory`` keeps
    everything in the process (demo and test runs).
    """

    backend: Literal["sql", "memory"] = "sql"
    url: str = "sqlite+aiosqlite:///./soundmate.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)
    create_tables_on_startup: bool = True


class GridSettings(BaseModel):
    """H3 grid settings."""

    resolution: int = Field(default=9, ge=0, le=15)


class AggregationSettings(BaseModel):
    """Cell aggregation and refresh scheduling policy.

    The rank weights and all time windows are tunable policy, not derived
    constants.
    """

    enabled: bool = True
    interval_seconds: int = Field(default=300, ge=1)
    batch_limit: int = Field(default=20, ge=1)
    staleness_seconds: int = Field(default=3600, ge=0)
    window_days: int = Field(default=30, ge=1)
    dedup_window_seconds: int = Field(default=30, ge=0)
    rank_play_weight: float = 0.7
    rank_user_weight: float = 0.3
    slow_run_seconds: float = 30.0
    force_limit: int = Field(default=100, ge=1)
    force_batch_size: int = Field(default=10, ge=1)
    force_batch_pause_seconds: float = Field(default=1.0, ge=0)
    recent_activity_hours: int = Field(default=24, ge=1)
    cell_timeout_seconds: float | None = None


class FeatureFetchSettings(BaseModel):
    """Background audio-feature fetch settings."""

    enabled: bool = True
    queue_size: int = Field(default=1000, ge=1)
    concurrency: int = Field(default=2, ge=1)
    spotify_api_url: str = "https://api.spotify.com/v1"
    request_timeout: float = 30.0
    drain_timeout: float = 5.0
    fallback_to_neutral: bool = True


class CacheSettings(BaseModel):
    """Map response cache settings."""

    enabled: bool = True
    ttl_seconds: int = Field(default=300, ge=1)
    max_entries: int = Field(default=1000, ge=1)
    cleanup_interval_seconds: int = Field(default=60, ge=1)


class MaintenanceSettings(BaseModel):
    """Retention thresholds for cleanup jobs."""

    inactive_cell_days: int = 30
    top_track_min_plays: int = 3
    top_track_days: int = 30
    playback_retention_days: int = 365


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    log_json_format: bool = False
    log_request_body: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="SOUNDMATE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    grid: GridSettings = Field(default_factory=GridSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    feature_fetch: FeatureFetchSettings = Field(default_factory=FeatureFetchSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)
    observability: ObservabilitySettings = Field(
        default_factory=ObservabilitySettings
    )

    @property
    def app_name(self) -> str:
        return self.app.name


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
