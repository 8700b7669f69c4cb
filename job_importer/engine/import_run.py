"""Single-source import run: fetch, parse, upsert in batches, then log."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Iterator, Sequence

import structlog

from ..config import SourceConfig
from ..errors import FetchError, ParseError, RunTimeoutError
from ..models import FailedItem, ImportLog, ImportStatus, file_name_for, utcnow
from ..store.base import LogStore
from .fetcher import Fetcher
from .parser import CandidateJob, FeedParser, RejectedEntry
from .upsert import BatchResult, Upserter


class RunState(str, Enum):
    FETCHING = "fetching"
    PARSING = "parsing"
    UPSERTING = "upserting"
    LOGGING = "logging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RunCounters:
    """Immutable tally of a run; every step returns a new value."""

    total_fetched: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failures: tuple[FailedItem, ...] = ()

    @property
    def failed_jobs(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> int:
        return self.new_jobs + self.updated_jobs

    def fetched(self, total: int) -> "RunCounters":
        return replace(self, total_fetched=total)

    def with_failures(self, items: Iterable[FailedItem]) -> "RunCounters":
        return replace(self, failures=self.failures + tuple(items))

    def add_batch(self, result: BatchResult) -> "RunCounters":
        return replace(
            self,
            new_jobs=self.new_jobs + result.new_count,
            updated_jobs=self.updated_jobs + result.updated_count,
            failures=self.failures + tuple(result.failed),
        )


@dataclass(frozen=True, slots=True)
class ImportRunResult:
    log: ImportLog
    whole_run_error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.whole_run_error is None


def derive_status(counters: RunCounters, error: Exception | None) -> ImportStatus:
    if error is not None:
        return ImportStatus.FAILED
    if counters.failed_jobs == 0:
        return ImportStatus.SUCCESS
    if counters.succeeded > 0:
        return ImportStatus.PARTIAL
    return ImportStatus.FAILED


class ImportRun:
    """State machine for one source: ``FETCHING → PARSING → UPSERTING → LOGGING → DONE``.

    Fetch and parse errors, as well as exceeding ``timeout`` seconds, move the
    run to ``FAILED``. Logging happens regardless of the outcome, so each call
    to :meth:`execute` persists exactly one :class:`ImportLog`.
    """

    def __init__(
        self,
        source: SourceConfig,
        fetcher: Fetcher,
        parser: FeedParser,
        upserter: Upserter,
        log_store: LogStore,
        *,
        batch_size: int = 50,
        timeout: float = 300.0,
        fetch_timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.fetcher = fetcher
        self.parser = parser
        self.upserter = upserter
        self.log_store = log_store
        self.batch_size = max(1, source.batch_size or batch_size)
        self.timeout = timeout
        self.fetch_timeout = fetch_timeout
        self.clock = clock
        self.monotonic = monotonic
        self.logger = (logger or structlog.get_logger("job_importer.run")).bind(
            source_url=source.url
        )
        self.state: RunState | None = None
        self.history: list[RunState] = []
        self._started = 0.0

    def execute(self) -> ImportRunResult:
        self._started = self.monotonic()
        counters = RunCounters()
        error: Exception | None = None
        self.logger.info("run_started", batch_size=self.batch_size)
        try:
            self._enter(RunState.FETCHING)
            payload = self._fetch()
            self._enter(RunState.PARSING)
            candidates, counters = self._parse(payload, counters)
            self._enter(RunState.UPSERTING)
            for batch in self._batches(candidates):
                self._check_deadline()
                counters = self._upsert(batch, counters)
        except (FetchError, ParseError) as exc:
            error = exc
            self.logger.warning("run_failed", state=self.state.value, error=str(exc))
        except Exception as exc:
            error = exc
            raise
        finally:
            if error is not None:
                self._enter(RunState.FAILED)
            log = self._write_log(counters, error)
        return ImportRunResult(log=log, whole_run_error=error)

    # ------------------------------------------------------------------
    def _fetch(self) -> bytes:
        remaining = self._check_deadline()
        response = self.fetcher.fetch(self.source.url, timeout=min(self.fetch_timeout, remaining))
        return response.content

    def _parse(
        self, payload: bytes, counters: RunCounters
    ) -> tuple[list[CandidateJob], RunCounters]:
        self._check_deadline()
        feed = self.parser.parse_document(payload, self.source.dialect)
        entries = list(feed.entries)
        candidates = [entry for entry in entries if isinstance(entry, CandidateJob)]
        rejected = [
            FailedItem(item=entry.item, reason=entry.reason)
            for entry in entries
            if isinstance(entry, RejectedEntry)
        ]
        self.logger.info(
            "feed_parsed",
            dialect=feed.dialect.value,
            entries=len(entries),
            rejected=len(rejected),
        )
        return candidates, counters.fetched(len(entries)).with_failures(rejected)

    def _upsert(self, batch: Sequence[CandidateJob], counters: RunCounters) -> RunCounters:
        result = self.upserter.upsert_batch(self.source.url, batch)
        self.logger.debug(
            "batch_upserted",
            size=len(batch),
            new=result.new_count,
            updated=result.updated_count,
            failed=len(result.failed),
        )
        return counters.add_batch(result)

    def _write_log(self, counters: RunCounters, error: Exception | None) -> ImportLog:
        self._enter(RunState.LOGGING)
        status = derive_status(counters, error)
        log = ImportLog(
            timestamp=self.clock(),
            source_url=self.source.url,
            file_name=file_name_for(self.source.url),
            status=status,
            total_fetched=counters.total_fetched,
            new_jobs=counters.new_jobs,
            updated_jobs=counters.updated_jobs,
            failed_jobs=counters.failed_jobs,
            failed_jobs_reasons=list(counters.failures),
            processing_time_ms=self._elapsed_ms(),
            error=str(error) if error is not None else None,
        )
        stored = self.log_store.append_log(log)
        self._enter(RunState.FAILED if error is not None else RunState.DONE)
        self.logger.info(
            "run_finished",
            status=status.value,
            total_fetched=log.total_fetched,
            new_jobs=log.new_jobs,
            updated_jobs=log.updated_jobs,
            failed_jobs=log.failed_jobs,
            processing_time_ms=log.processing_time_ms,
        )
        return stored

    def _batches(self, candidates: list[CandidateJob]) -> Iterator[list[CandidateJob]]:
        for start in range(0, len(candidates), self.batch_size):
            yield candidates[start : start + self.batch_size]

    def _check_deadline(self) -> float:
        remaining = self.timeout - (self.monotonic() - self._started)
        if remaining <= 0:
            raise RunTimeoutError(
                f"import run exceeded {self.timeout:g}s", url=self.source.url
            )
        return remaining

    def _elapsed_ms(self) -> int:
        return max(0, int((self.monotonic() - self._started) * 1000))

    def _enter(self, state: RunState) -> None:
        if self.history and self.history[-1] is state:
            return
        self.state = state
        self.history.append(state)


__all__ = [
    "ImportRun",
    "ImportRunResult",
    "RunCounters",
    "RunState",
    "derive_status",
]
