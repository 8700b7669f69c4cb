"""SQLite implementation of the job and log stores."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from ..errors import DuplicateKeyError, StorageError
from ..infra.storage import SQLiteManager
from ..models import ImportLog, JobRecord
from .base import ImportStore, LogFilter

_JOB_COLUMNS = (
    "external_id",
    "source_url",
    "title",
    "company",
    "location",
    "job_type",
    "category",
    "description",
    "salary",
    "requirements",
    "benefits",
    "application_url",
    "published_date",
    "first_seen_at",
    "last_seen_at",
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SQLiteImportStore(ImportStore):
    """Persist jobs and import logs in a single SQLite database."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._conn = self.manager.connect(db_path)
        self._lock = self.manager.lock(db_path)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def find_one(self, external_id: str, source_url: str) -> JobRecord | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM jobs WHERE external_id = ? AND source_url = ?",
                    (external_id, source_url),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"job lookup failed: {exc}") from exc
        return self._row_to_job(row) if row else None

    def insert(self, record: JobRecord) -> str:
        values = self._job_values(record)
        placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
        try:
            with self._lock:
                cur = self._conn.execute(
                    f"INSERT INTO jobs ({', '.join(_JOB_COLUMNS)}) VALUES ({placeholders})",
                    values,
                )
                self._conn.commit()
                return str(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            self._rollback()
            raise DuplicateKeyError(
                f"duplicate job {record.external_id!r} for {record.source_url}"
            ) from exc
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageError(f"job insert failed: {exc}") from exc

    def update(self, record_id: str, record: JobRecord) -> None:
        # first_seen_at is never overwritten
        columns = [col for col in _JOB_COLUMNS if col != "first_seen_at"]
        values = [
            value
            for col, value in zip(_JOB_COLUMNS, self._job_values(record))
            if col != "first_seen_at"
        ]
        assignments = ", ".join(f"{col} = ?" for col in columns)
        try:
            with self._lock:
                self._conn.execute(
                    f"UPDATE jobs SET {assignments} WHERE id = ?", (*values, int(record_id))
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageError(f"job update failed: {exc}") from exc

    def count_jobs(self, source_url: str | None = None) -> int:
        with self._lock:
            if source_url is None:
                row = self._conn.execute("SELECT count(*) FROM jobs").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT count(*) FROM jobs WHERE source_url = ?", (source_url,)
                ).fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------
    def append_log(self, log: ImportLog) -> ImportLog:
        try:
            with self._lock:
                cur = self._conn.execute(
                    "INSERT INTO import_logs(timestamp, source_url, status, payload) VALUES (?, ?, ?, ?)",
                    (
                        _iso(log.timestamp),
                        log.source_url,
                        log.status.value,
                        log.model_dump_json(exclude={"id"}),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise StorageError(f"log append failed: {exc}") from exc
        return log.model_copy(update={"id": str(cur.lastrowid)})

    def query_logs(
        self, log_filter: LogFilter | None = None, page: int = 1, limit: int = 10
    ) -> tuple[list[ImportLog], int]:
        where, params = self._where(log_filter)
        page = max(page, 1)
        with self._lock:
            total = self._conn.execute(
                f"SELECT count(*) FROM import_logs{where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT id, payload FROM import_logs{where} ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (*params, limit, (page - 1) * limit),
            ).fetchall()
        return [self._row_to_log(row) for row in rows], int(total)

    def iter_logs(self, since: datetime | None = None) -> Iterable[ImportLog]:
        where, params = self._where(LogFilter(since=since))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, payload FROM import_logs{where} ORDER BY timestamp ASC, id ASC",
                params,
            ).fetchall()
        return [self._row_to_log(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.commit()

    # ------------------------------------------------------------------
    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error:
            pass

    @staticmethod
    def _where(log_filter: LogFilter | None) -> tuple[str, tuple[Any, ...]]:
        if log_filter is None:
            return "", ()
        clauses: list[str] = []
        params: list[Any] = []
        if log_filter.source_url:
            clauses.append("source_url = ?")
            params.append(log_filter.source_url)
        if log_filter.status is not None:
            clauses.append("status = ?")
            params.append(log_filter.status.value)
        if log_filter.since is not None:
            clauses.append("timestamp >= ?")
            params.append(_iso(log_filter.since))
        if not clauses:
            return "", ()
        return " WHERE " + " AND ".join(clauses), tuple(params)

    @staticmethod
    def _job_values(record: JobRecord) -> tuple[Any, ...]:
        return (
            record.external_id,
            record.source_url,
            record.title,
            record.company,
            record.location,
            record.job_type,
            record.category,
            record.description,
            record.salary.model_dump_json() if record.salary else None,
            json.dumps(record.requirements, ensure_ascii=False),
            json.dumps(record.benefits, ensure_ascii=False),
            record.application_url,
            _iso(record.published_date),
            _iso(record.first_seen_at),
            _iso(record.last_seen_at),
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> JobRecord:
        data = {col: row[col] for col in _JOB_COLUMNS}
        data["id"] = str(row["id"])
        data["salary"] = json.loads(row["salary"]) if row["salary"] else None
        data["requirements"] = json.loads(row["requirements"] or "[]")
        data["benefits"] = json.loads(row["benefits"] or "[]")
        for key in ("company", "location", "job_type", "category", "description", "application_url"):
            data[key] = data[key] or ""
        return JobRecord.model_validate(data)

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> ImportLog:
        log = ImportLog.model_validate_json(row["payload"])
        return log.model_copy(update={"id": str(row["id"])})


__all__ = ["SQLiteImportStore"]
