from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from bson import ObjectId
from pymongo import errors as mongo_errors

from job_importer.errors import DuplicateKeyError, StorageError
from job_importer.models import ImportLog, ImportStatus, JobRecord
from job_importer.store import LogFilter, MongoImportStore


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict) and "$gte" in condition:
            if value is None or value < condition["$gte"]:
                return False
        elif value != condition:
            return False
    return True


class StubCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self.docs = docs

    def sort(self, spec, direction=None):
        keys = [(spec, direction)] if isinstance(spec, str) else list(spec)
        for key, order in reversed(keys):
            self.docs.sort(key=lambda doc: doc[key], reverse=order == -1)
        return self

    def skip(self, count: int):
        self.docs = self.docs[count:]
        return self

    def limit(self, count: int):
        self.docs = self.docs[:count]
        return self

    def __iter__(self):
        return iter(list(self.docs))


class StubCollection:
    def __init__(self) -> None:
        self.docs: list[dict[str, Any]] = []
        self.indexes: list[tuple] = []
        self.unique_keys: tuple[str, ...] = ()
        self.fail_writes = False

    def create_index(self, keys, unique: bool = False, name: str | None = None):
        self.indexes.append((tuple(keys), unique, name))
        if unique:
            self.unique_keys = tuple(key for key, _ in keys)

    def find_one(self, query):
        return next((dict(doc) for doc in self.docs if _matches(doc, query)), None)

    def insert_one(self, doc):
        if self.fail_writes:
            raise mongo_errors.AutoReconnect("primary stepped down")
        if self.unique_keys and any(
            all(existing.get(key) == doc.get(key) for key in self.unique_keys) for existing in self.docs
        ):
            raise mongo_errors.DuplicateKeyError("E11000 duplicate key", 11000)
        stored = dict(doc)
        stored["_id"] = ObjectId()
        self.docs.append(stored)
        return type("InsertResult", (), {"inserted_id": stored["_id"]})()

    def update_one(self, query, update):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update["$set"])
                return

    def count_documents(self, query):
        return sum(1 for doc in self.docs if _matches(doc, query))

    def find(self, query):
        return StubCursor([dict(doc) for doc in self.docs if _matches(doc, query)])


class StubClient:
    def __init__(self) -> None:
        self.collections: dict[str, StubCollection] = {}
        self.closed = False

    def __getitem__(self, database: str):
        client = self

        class _Database:
            def __getitem__(self, name: str) -> StubCollection:
                return client.collections.setdefault(f"{database}.{name}", StubCollection())

        return _Database()

    def close(self) -> None:
        self.closed = True


NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mongo_store() -> MongoImportStore:
    return MongoImportStore("mongodb://unused", "jobs_test", client=StubClient())


def _job(external_id: str, **fields) -> JobRecord:
    return JobRecord(
        external_id=external_id,
        source_url="https://feed",
        title=fields.pop("title", "Engineer"),
        first_seen_at=NOW,
        last_seen_at=NOW,
        **fields,
    )


def test_creates_unique_natural_key_index(mongo_store: MongoImportStore) -> None:
    keys, unique, name = mongo_store.jobs.indexes[0]
    assert keys == (("externalId", 1), ("sourceUrl", 1))
    assert unique
    assert name == "uniq_external_id_source_url"


def test_insert_find_and_update(mongo_store: MongoImportStore) -> None:
    record_id = mongo_store.insert(_job("a", location="Remote"))
    found = mongo_store.find_one("a", "https://feed")
    assert found.id == record_id
    assert found.location == "Remote"

    later = NOW + timedelta(hours=1)
    mongo_store.update(record_id, _job("a", location="Porto").model_copy(update={"first_seen_at": later, "last_seen_at": later}))
    updated = mongo_store.find_one("a", "https://feed")
    assert updated.location == "Porto"
    assert updated.first_seen_at == NOW
    assert updated.last_seen_at == later
    assert mongo_store.count_jobs("https://feed") == 1


def test_duplicate_and_storage_errors_are_translated(mongo_store: MongoImportStore) -> None:
    mongo_store.insert(_job("a"))
    with pytest.raises(DuplicateKeyError):
        mongo_store.insert(_job("a"))
    mongo_store.jobs.fail_writes = True
    with pytest.raises(StorageError):
        mongo_store.insert(_job("b"))


def test_logs_query_newest_first_with_pagination(mongo_store: MongoImportStore) -> None:
    for offset in range(5):
        mongo_store.append_log(
            ImportLog(
                timestamp=NOW + timedelta(minutes=offset),
                source_url="https://feed" if offset % 2 == 0 else "https://other",
                file_name="feed",
                status=ImportStatus.SUCCESS if offset else ImportStatus.FAILED,
                new_jobs=offset,
            )
        )
    page, total = mongo_store.query_logs(page=2, limit=2)
    assert total == 5
    assert [log.new_jobs for log in page] == [2, 1]

    failed, failed_total = mongo_store.query_logs(LogFilter(status=ImportStatus.FAILED))
    assert failed_total == 1
    assert failed[0].new_jobs == 0

    since = list(mongo_store.iter_logs(since=NOW + timedelta(minutes=3)))
    assert [log.new_jobs for log in since] == [3, 4]
    assert all(log.id for log in since)
