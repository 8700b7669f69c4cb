"""Pydantic models used across the importer configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for the recurring import trigger."""

    CRON = "cron"
    INTERVAL = "interval"


class Dialect(str, Enum):
    """Feed schema variants understood by the parser."""

    AUTO = "auto"
    RSS = "rss"
    ATOM = "atom"
    JOB_XML = "job_xml"
    GENERIC = "generic"


class ScheduleConfig(BaseModel):
    """Configuration describing when scheduled imports are enqueued."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=3600,
        description="Cron expression or interval seconds/kwargs, depending on type.",
    )
    enabled: bool = True

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        return self


class SourceConfig(BaseModel):
    """Static metadata describing one feed."""

    url: str
    name: str | None = None
    dialect: Dialect = Dialect.AUTO
    batch_size: int | None = None
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("Source url must be an http(s) URL")
        return value

    @field_validator("batch_size")
    @classmethod
    def _validate_batch(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("batch_size must be >= 1")
        return value

    @property
    def display_name(self) -> str:
        return self.name or self.url


class QueueConfig(BaseModel):
    """Task broker retry and retention policy."""

    max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    keep_completed: int = 100
    keep_failed: int = 50
    default_priority: int = 0
    poll_interval_seconds: float = 1.0
    db_path: Path = Field(default=Path("data/queue.db"))

    @model_validator(mode="after")
    def _validate_policy(self) -> "QueueConfig":
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0")
        if self.keep_completed < 0 or self.keep_failed < 0:
            raise ValueError("retention counts must be >= 0")
        return self


class FetchConfig(BaseModel):
    """HTTP fetch behaviour for feed downloads."""

    timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    user_agent: str = "job-importer/0.1 (+feed importer)"


class StorageConfig(BaseModel):
    """Job/log store backend selection."""

    backend: Literal["sqlite", "mongodb"] = "sqlite"
    sqlite_path: Path = Field(default=Path("data/jobs.db"))
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "job_importer"

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)


class StatsConfig(BaseModel):
    """Windows used by the statistics aggregator."""

    recent_window_hours: float = 24.0
    trend_days: int = 7


class GlobalConfig(BaseModel):
    """Global controls shared across sources."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    batch_size: int = 50
    worker_concurrency: int = 5
    run_timeout_seconds: float = 300.0
    queue: QueueConfig = Field(default_factory=QueueConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)

    @model_validator(mode="after")
    def _validate_limits(self) -> "GlobalConfig":
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be >= 1")
        if self.run_timeout_seconds <= 0:
            raise ValueError("run_timeout_seconds must be > 0")
        return self


def resolve_path(path: Path, base_dir: Path) -> Path:
    """Return ``path`` anchored at ``base_dir`` when relative."""

    if not path.is_absolute():
        return (base_dir / path).resolve()
    return path


__all__ = [
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
