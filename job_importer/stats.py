"""Read-only aggregation of import logs for the reporting surface."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

from .models import ImportLog, ImportStatus, utcnow
from .store.base import LogStore


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def _day(value: datetime) -> str:
    return value.astimezone(timezone.utc).date().isoformat()


class StatsAggregator:
    """Compute overview, daily trends and per-source figures.

    Every public method works on a snapshot of the log store taken when it is
    called; :meth:`summary` shares one snapshot between all three views.
    """

    def __init__(
        self,
        log_store: LogStore,
        recent_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.log_store = log_store
        self.recent_window = recent_window
        self.clock = clock

    def snapshot(self) -> list[ImportLog]:
        return list(self.log_store.iter_logs())

    def summary(self, days: int = 7) -> dict[str, Any]:
        logs = self.snapshot()
        return {
            "overview": self.overview(logs),
            "trends": self.trends(days, logs),
            "sourceStats": self.per_source(logs),
        }

    def overview(self, logs: Sequence[ImportLog] | None = None) -> dict[str, Any]:
        logs = self.snapshot() if logs is None else logs
        total = len(logs)
        successful = sum(1 for log in logs if log.status is ImportStatus.SUCCESS)
        failed = sum(1 for log in logs if log.status is ImportStatus.FAILED)
        cutoff = self.clock() - self.recent_window
        recent = sum(1 for log in logs if log.timestamp >= cutoff)
        return {
            "totalImports": total,
            "successfulImports": successful,
            "failedImports": failed,
            "recentImports": recent,
            "successRate": _rate(successful, total),
        }

    def trends(self, days: int = 7, logs: Sequence[ImportLog] | None = None) -> list[dict[str, Any]]:
        logs = self.snapshot() if logs is None else logs
        today = self.clock().astimezone(timezone.utc).date()
        first_day = (today - timedelta(days=max(days, 1) - 1)).isoformat()
        buckets: dict[str, dict[str, Any]] = {}
        for log in logs:
            day = _day(log.timestamp)
            if day < first_day:
                continue
            bucket = buckets.setdefault(
                day,
                {
                    "date": day,
                    "totalImports": 0,
                    "totalJobs": 0,
                    "newJobs": 0,
                    "updatedJobs": 0,
                    "failedJobs": 0,
                },
            )
            bucket["totalImports"] += 1
            bucket["totalJobs"] += log.total_fetched
            bucket["newJobs"] += log.new_jobs
            bucket["updatedJobs"] += log.updated_jobs
            bucket["failedJobs"] += log.failed_jobs
        return [buckets[day] for day in sorted(buckets)]

    def per_source(self, logs: Sequence[ImportLog] | None = None) -> list[dict[str, Any]]:
        logs = self.snapshot() if logs is None else logs
        grouped: dict[str, list[ImportLog]] = defaultdict(list)
        for log in logs:
            grouped[log.source_url].append(log)

        rows = []
        for source_url, entries in grouped.items():
            total = len(entries)
            successful = sum(1 for log in entries if log.status is ImportStatus.SUCCESS)
            last = max(log.timestamp for log in entries)
            rows.append(
                {
                    "sourceUrl": source_url,
                    "totalImports": total,
                    "successfulImports": successful,
                    "successRate": _rate(successful, total),
                    "totalJobsFetched": sum(log.total_fetched for log in entries),
                    "totalNewJobs": sum(log.new_jobs for log in entries),
                    "totalUpdatedJobs": sum(log.updated_jobs for log in entries),
                    "totalFailedJobs": sum(log.failed_jobs for log in entries),
                    "avgProcessingTime": round(
                        sum(log.processing_time_ms for log in entries) / total, 2
                    ),
                    "lastImport": last,
                }
            )
        rows.sort(key=lambda row: row["lastImport"], reverse=True)
        for row in rows:
            row["lastImport"] = row["lastImport"].isoformat()
        return rows


__all__ = ["StatsAggregator"]
