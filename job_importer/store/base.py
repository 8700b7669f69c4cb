"""Storage contracts consumed by the upserter, import runs and statistics."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..models import ImportLog, ImportStatus, JobRecord


@dataclass(slots=True)
class LogFilter:
    """Optional constraints for log queries."""

    source_url: str | None = None
    status: ImportStatus | None = None
    since: datetime | None = None


class JobStore(ABC):
    """Persistent job records keyed by ``(external_id, source_url)``.

    Implementations must enforce uniqueness of the natural key and raise
    :class:`~job_importer.errors.DuplicateKeyError` when an insert collides,
    and :class:`~job_importer.errors.StorageError` for any other write failure.
    """

    @abstractmethod
    def find_one(self, external_id: str, source_url: str) -> JobRecord | None:
        """Return the stored record for the natural key, if any."""

    @abstractmethod
    def insert(self, record: JobRecord) -> str:
        """Insert a new record and return its store id."""

    @abstractmethod
    def update(self, record_id: str, record: JobRecord) -> None:
        """Overwrite the mutable fields of an existing record."""

    @abstractmethod
    def count_jobs(self, source_url: str | None = None) -> int:
        """Number of stored records, optionally for one source."""


class LogStore(ABC):
    """Append-only store of :class:`ImportLog` entries."""

    @abstractmethod
    def append_log(self, log: ImportLog) -> ImportLog:
        """Persist a log and return it with its store id."""

    @abstractmethod
    def query_logs(
        self, log_filter: LogFilter | None = None, page: int = 1, limit: int = 10
    ) -> tuple[list[ImportLog], int]:
        """Return one page of logs (newest first) and the total match count."""

    @abstractmethod
    def iter_logs(self, since: datetime | None = None) -> Iterable[ImportLog]:
        """Iterate every log, optionally only those at or after ``since``."""


class ImportStore(JobStore, LogStore):
    """A backend providing both job and log storage."""

    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["ImportStore", "JobStore", "LogFilter", "LogStore"]
