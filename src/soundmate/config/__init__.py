"""Configuration module for SoundMate."""

from .settings import (
    AggregationSettings,
    CacheSettings,
    DatabaseSettings,
    FeatureFetchSettings,
    GridSettings,
    MaintenanceSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "AggregationSettings",
    "CacheSettings",
    "DatabaseSettings",
    "FeatureFetchSettings",
    "GridSettings",
    "MaintenanceSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
