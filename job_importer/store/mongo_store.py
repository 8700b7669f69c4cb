"""MongoDB implementation of the job and log stores."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo import errors as mongo_errors

from ..errors import DuplicateKeyError, StorageError
from ..models import ImportLog, JobRecord
from .base import ImportStore, LogFilter


class MongoImportStore(ImportStore):
    """Write jobs and logs into MongoDB collections with a unique natural-key index."""

    def __init__(
        self,
        uri: str,
        database: str,
        *,
        client: MongoClient | None = None,
        jobs_collection: str = "jobs",
        logs_collection: str = "import_logs",
    ) -> None:
        self.client = client or MongoClient(uri)
        db = self.client[database]
        self.jobs = db[jobs_collection]
        self.logs = db[logs_collection]
        self.jobs.create_index(
            [("externalId", ASCENDING), ("sourceUrl", ASCENDING)],
            unique=True,
            name="uniq_external_id_source_url",
        )
        self.logs.create_index([("timestamp", DESCENDING)])

    # ------------------------------------------------------------------
    def find_one(self, external_id: str, source_url: str) -> JobRecord | None:
        try:
            doc = self.jobs.find_one({"externalId": external_id, "sourceUrl": source_url})
        except mongo_errors.PyMongoError as exc:
            raise StorageError(f"job lookup failed: {exc}") from exc
        return self._doc_to_job(doc) if doc else None

    def insert(self, record: JobRecord) -> str:
        try:
            result = self.jobs.insert_one(self._job_doc(record))
        except mongo_errors.DuplicateKeyError as exc:
            raise DuplicateKeyError(
                f"duplicate job {record.external_id!r} for {record.source_url}"
            ) from exc
        except mongo_errors.PyMongoError as exc:
            raise StorageError(f"job insert failed: {exc}") from exc
        return str(result.inserted_id)

    def update(self, record_id: str, record: JobRecord) -> None:
        doc = self._job_doc(record)
        doc.pop("firstSeenAt", None)
        try:
            self.jobs.update_one({"_id": ObjectId(record_id)}, {"$set": doc})
        except mongo_errors.PyMongoError as exc:
            raise StorageError(f"job update failed: {exc}") from exc

    def count_jobs(self, source_url: str | None = None) -> int:
        query = {"sourceUrl": source_url} if source_url else {}
        return int(self.jobs.count_documents(query))

    # ------------------------------------------------------------------
    def append_log(self, log: ImportLog) -> ImportLog:
        try:
            doc = log.model_dump(by_alias=True, exclude={"id"}, mode="python")
            doc["status"] = log.status.value
            result = self.logs.insert_one(doc)
        except mongo_errors.PyMongoError as exc:
            raise StorageError(f"log append failed: {exc}") from exc
        return log.model_copy(update={"id": str(result.inserted_id)})

    def query_logs(
        self, log_filter: LogFilter | None = None, page: int = 1, limit: int = 10
    ) -> tuple[list[ImportLog], int]:
        query = self._query(log_filter)
        page = max(page, 1)
        total = self.logs.count_documents(query)
        cursor = (
            self.logs.find(query)
            .sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return [self._doc_to_log(doc) for doc in cursor], int(total)

    def iter_logs(self, since: datetime | None = None) -> Iterable[ImportLog]:
        cursor = self.logs.find(self._query(LogFilter(since=since))).sort("timestamp", ASCENDING)
        return [self._doc_to_log(doc) for doc in cursor]

    def close(self) -> None:
        self.client.close()

    # ------------------------------------------------------------------
    @staticmethod
    def _query(log_filter: LogFilter | None) -> dict[str, Any]:
        query: dict[str, Any] = {}
        if log_filter is None:
            return query
        if log_filter.source_url:
            query["sourceUrl"] = log_filter.source_url
        if log_filter.status is not None:
            query["status"] = log_filter.status.value
        if log_filter.since is not None:
            query["timestamp"] = {"$gte": log_filter.since}
        return query

    @staticmethod
    def _job_doc(record: JobRecord) -> dict[str, Any]:
        return record.model_dump(by_alias=True, exclude={"id"}, mode="python")

    @staticmethod
    def _doc_to_job(doc: dict[str, Any]) -> JobRecord:
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return JobRecord.model_validate(data)

    @staticmethod
    def _doc_to_log(doc: dict[str, Any]) -> ImportLog:
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return ImportLog.model_validate(data)


__all__ = ["MongoImportStore"]
