from __future__ import annotations

from datetime import datetime, timedelta, timezone

from job_importer.models import FailedItem, ImportLog, ImportStatus
from job_importer.stats import StatsAggregator

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _log(url: str, status: ImportStatus, when: datetime, **counts) -> ImportLog:
    return ImportLog(
        timestamp=when,
        source_url=url,
        file_name=url,
        status=status,
        **counts,
    )


def _seed(store) -> None:
    store.append_log(
        _log("https://a", ImportStatus.SUCCESS, NOW - timedelta(days=3), total_fetched=10, new_jobs=10, processing_time_ms=100)
    )
    store.append_log(
        _log("https://b", ImportStatus.FAILED, NOW - timedelta(days=1, hours=1), processing_time_ms=50)
    )
    store.append_log(
        _log(
            "https://a",
            ImportStatus.PARTIAL,
            NOW - timedelta(hours=2),
            total_fetched=6,
            new_jobs=2,
            updated_jobs=3,
            failed_jobs=1,
            failed_jobs_reasons=[FailedItem(item="x", reason="title: required")],
            processing_time_ms=300,
        )
    )


def test_overview(sqlite_store) -> None:
    _seed(sqlite_store)
    stats = StatsAggregator(sqlite_store, clock=lambda: NOW)
    assert stats.overview() == {
        "totalImports": 3,
        "successfulImports": 1,
        "failedImports": 1,
        "recentImports": 1,
        "successRate": 33.33,
    }


def test_recent_window_is_configurable(sqlite_store) -> None:
    _seed(sqlite_store)
    stats = StatsAggregator(sqlite_store, recent_window=timedelta(days=2), clock=lambda: NOW)
    assert stats.overview()["recentImports"] == 2


def test_empty_store(sqlite_store) -> None:
    stats = StatsAggregator(sqlite_store, clock=lambda: NOW)
    assert stats.summary() == {
        "overview": {
            "totalImports": 0,
            "successfulImports": 0,
            "failedImports": 0,
            "recentImports": 0,
            "successRate": 0.0,
        },
        "trends": [],
        "sourceStats": [],
    }


def test_trends_bucket_by_utc_day(sqlite_store) -> None:
    _seed(sqlite_store)
    sqlite_store.append_log(_log("https://c", ImportStatus.SUCCESS, NOW - timedelta(days=30), total_fetched=99))
    trends = StatsAggregator(sqlite_store, clock=lambda: NOW).trends(days=7)
    assert trends == [
        {"date": "2024-05-07", "totalImports": 1, "totalJobs": 10, "newJobs": 10, "updatedJobs": 0, "failedJobs": 0},
        {"date": "2024-05-09", "totalImports": 1, "totalJobs": 0, "newJobs": 0, "updatedJobs": 0, "failedJobs": 0},
        {"date": "2024-05-10", "totalImports": 1, "totalJobs": 6, "newJobs": 2, "updatedJobs": 3, "failedJobs": 1},
    ]


def test_per_source_most_recent_first(sqlite_store) -> None:
    _seed(sqlite_store)
    rows = StatsAggregator(sqlite_store, clock=lambda: NOW).per_source()
    assert [row["sourceUrl"] for row in rows] == ["https://a", "https://b"]
    first = rows[0]
    assert first["totalImports"] == 2
    assert first["successfulImports"] == 1
    assert first["successRate"] == 50.0
    assert first["totalJobsFetched"] == 16
    assert first["totalNewJobs"] == 12
    assert first["totalUpdatedJobs"] == 3
    assert first["totalFailedJobs"] == 1
    assert first["avgProcessingTime"] == 200.0
    assert first["lastImport"] == (NOW - timedelta(hours=2)).isoformat()
