"""Canonical job and import-log records shared by the pipeline and the stores."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%d.%m.%Y",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """Coerce feed timestamps (RFC 822, ISO 8601, epoch) into aware UTC datetimes.

    Raises ``ValueError`` for non-empty values that match none of the supported
    formats so that callers can report the record as invalid.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        numeric = float(value)
        if numeric > 1_000_000_000_000:  # milliseconds
            numeric /= 1000.0
        return datetime.fromtimestamp(numeric, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        normalised = text[:-1] + "+00:00" if text.endswith("Z") else text
        try:
            dt = datetime.fromisoformat(normalised)
        except ValueError:
            try:
                dt = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                for fmt in _DATE_FORMATS:
                    try:
                        dt = datetime.strptime(text, fmt)
                    except ValueError:
                        continue
                    break
                else:
                    raise ValueError(f"unparseable date: {text!r}") from None
    else:
        raise ValueError(f"unsupported date value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def file_name_for(url: str) -> str:
    """Human label for a feed URL, e.g. ``jobicy.com/?feed=job_feed``."""

    parsed = urlparse(url)
    label = parsed.netloc or url
    if parsed.path and parsed.path != "/":
        label += parsed.path
    elif parsed.query:
        label += "/"
    if parsed.query:
        label += f"?{parsed.query}"
    return label


class ImportStatus(str, Enum):
    """Outcome of a single source run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Base model serialising to the camelCase shape used by the reporting API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Salary(CamelModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)
    currency: str | None = None

    @model_validator(mode="after")
    def _validate_bounds(self) -> "Salary":
        if self.min is not None and self.max is not None and self.max < self.min:
            raise ValueError("salary max must be >= min")
        return self


class JobRecord(CamelModel):
    """A listing as persisted in the job store."""

    id: str | None = None
    external_id: str
    source_url: str
    title: str
    company: str = ""
    location: str = ""
    job_type: str = ""
    category: str = ""
    description: str = ""
    salary: Salary | None = None
    requirements: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    application_url: str = ""
    published_date: datetime | None = None
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None

    @field_validator("external_id", "source_url", "title", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("field is required")
        return text

    @field_validator("published_date", "first_seen_at", "last_seen_at", mode="before")
    @classmethod
    def _coerce_dates(cls, value: Any) -> datetime | None:
        return parse_datetime(value)

    def natural_key(self) -> tuple[str, str]:
        return self.external_id, self.source_url


class FailedItem(CamelModel):
    item: str
    reason: str


class ImportLog(CamelModel):
    """Immutable outcome of one source run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str | None = None
    timestamp: datetime
    source_url: str
    file_name: str
    status: ImportStatus
    total_fetched: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failed_jobs: int = 0
    failed_jobs_reasons: list[FailedItem] = Field(default_factory=list)
    processing_time_ms: int = 0
    error: str | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return parse_datetime(value)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "FailedItem",
    "ImportLog",
    "ImportStatus",
    "JobRecord",
    "Salary",
    "file_name_for",
    "parse_datetime",
    "utcnow",
]
