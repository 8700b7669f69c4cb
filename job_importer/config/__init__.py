"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    Dialect,
    FetchConfig,
    GlobalConfig,
    QueueConfig,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    StatsConfig,
    StorageConfig,
    resolve_path,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "Dialect",
    "FetchConfig",
    "GlobalConfig",
    "QueueConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "StatsConfig",
    "StorageConfig",
    "resolve_path",
]
