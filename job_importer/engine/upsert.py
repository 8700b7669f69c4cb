"""Validation and idempotent insert-or-update of candidate jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Literal

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..errors import DuplicateKeyError, JobValidationError, StorageError
from ..models import FailedItem, JobRecord, utcnow
from ..store.base import JobStore
from .parser import CandidateJob

WriteOutcome = Literal["new", "updated"]


@dataclass(slots=True)
class BatchResult:
    new_count: int = 0
    updated_count: int = 0
    failed: list[FailedItem] = field(default_factory=list)


class Upserter:
    """Merge candidates into a :class:`JobStore` keyed by ``(external_id, source_url)``.

    The store's unique constraint decides between new and existing records. An
    insert that loses a race to a concurrent writer is replayed as an update.
    Write failures are retried once after the rest of the batch and then
    reported as per-item failures.
    """

    def __init__(
        self,
        store: JobStore,
        clock: Callable[[], datetime] = utcnow,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.logger = logger or structlog.get_logger("job_importer.upsert")

    def upsert_batch(self, source_url: str, candidates: Iterable[CandidateJob]) -> BatchResult:
        result = BatchResult()
        pending: list[tuple[CandidateJob, JobRecord]] = []
        for candidate in candidates:
            try:
                record = self.validate(source_url, candidate)
            except JobValidationError as exc:
                result.failed.append(FailedItem(item=candidate.label(), reason=str(exc)))
                continue
            try:
                self._count(result, self._write(record))
            except StorageError as exc:
                self.logger.warning(
                    "upsert_storage_error",
                    source_url=source_url,
                    external_id=record.external_id,
                    error=str(exc),
                )
                pending.append((candidate, record))

        for candidate, record in pending:
            try:
                self._count(result, self._write(record))
            except StorageError as exc:
                result.failed.append(
                    FailedItem(item=candidate.label(), reason=f"storage error: {exc}")
                )
        return result

    def validate(self, source_url: str, candidate: CandidateJob) -> JobRecord:
        now = self.clock()
        try:
            return JobRecord.model_validate(
                {
                    "external_id": candidate.external_id,
                    "source_url": source_url,
                    "title": candidate.title,
                    "company": candidate.company,
                    "location": candidate.location,
                    "job_type": candidate.job_type,
                    "category": candidate.category,
                    "description": candidate.description,
                    "salary": candidate.salary,
                    "requirements": candidate.requirements,
                    "benefits": candidate.benefits,
                    "application_url": candidate.application_url,
                    "published_date": candidate.published_date,
                    "first_seen_at": now,
                    "last_seen_at": now,
                }
            )
        except PydanticValidationError as exc:
            raise JobValidationError(self._describe(exc)) from exc

    # ------------------------------------------------------------------
    def _write(self, record: JobRecord) -> WriteOutcome:
        existing = self.store.find_one(*record.natural_key())
        if existing is None:
            try:
                self.store.insert(record)
                return "new"
            except DuplicateKeyError:
                self.logger.info(
                    "upsert_duplicate_race",
                    source_url=record.source_url,
                    external_id=record.external_id,
                )
                existing = self.store.find_one(*record.natural_key())
                if existing is None:
                    raise StorageError(
                        f"duplicate key reported for missing job {record.external_id!r}"
                    ) from None
        self.store.update(
            existing.id,
            record.model_copy(update={"first_seen_at": existing.first_seen_at or record.first_seen_at}),
        )
        return "updated"

    @staticmethod
    def _count(result: BatchResult, outcome: WriteOutcome) -> None:
        if outcome == "new":
            result.new_count += 1
        else:
            result.updated_count += 1

    @staticmethod
    def _describe(exc: PydanticValidationError) -> str:
        parts = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        return "; ".join(parts)


__all__ = ["BatchResult", "Upserter"]
