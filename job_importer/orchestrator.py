"""Facade wiring the broker, workers, import runs, stores and statistics together."""

from __future__ import annotations

import math
from datetime import timedelta
from typing import Any, Sequence

from .broker import ImportTask, RetryPolicy, SQLiteTaskBroker, TaskBroker, TaskOutcome
from .config import ConfigRepository, GlobalConfig, resolve_path
from .engine import FeedParser, Fetcher, ImportRun, ImportRunResult, Upserter, WorkerPool
from .infra import SQLiteManager
from .logging_conf import component_logger, source_logger
from .models import ImportLog
from .scheduler import APSchedulerAdapter
from .stats import StatsAggregator
from .store import ImportStore, MongoImportStore, SQLiteImportStore


def build_store(config: GlobalConfig, base_dir, manager: SQLiteManager) -> ImportStore:
    storage = config.storage
    if storage.backend == "mongodb":
        return MongoImportStore(storage.mongo_uri, storage.mongo_database)
    return SQLiteImportStore(manager, resolve_path(storage.sqlite_path, base_dir))


def build_broker(config: GlobalConfig, base_dir, manager: SQLiteManager) -> SQLiteTaskBroker:
    queue = config.queue
    return SQLiteTaskBroker(
        manager,
        resolve_path(queue.db_path, base_dir),
        RetryPolicy(
            max_attempts=queue.max_attempts,
            backoff_base=queue.backoff_base_seconds,
            keep_completed=queue.keep_completed,
            keep_failed=queue.keep_failed,
        ),
        poll_interval=queue.poll_interval_seconds,
    )


class ImportOrchestrator:
    """Central coordinator: triggers, runs and reports imports."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        broker: TaskBroker,
        store: ImportStore,
        *,
        fetcher: Fetcher | None = None,
        parser: FeedParser | None = None,
        scheduler: APSchedulerAdapter | None = None,
        stats: StatsAggregator | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.broker = broker
        self.store = store
        self.fetcher = fetcher or Fetcher(self.global_config.fetch)
        self.parser = parser or FeedParser()
        self.upserter = Upserter(store)
        self.scheduler = scheduler
        self.stats = stats or StatsAggregator(
            store,
            recent_window=timedelta(hours=self.global_config.stats.recent_window_hours),
        )
        self.worker_pool = WorkerPool(
            broker,
            self.execute_task,
            concurrency=self.global_config.worker_concurrency,
            poll_interval=self.global_config.queue.poll_interval_seconds,
        )
        self.logger = component_logger("orchestrator")

    @classmethod
    def from_config(
        cls,
        config_repository: ConfigRepository,
        *,
        manager: SQLiteManager | None = None,
        scheduler: APSchedulerAdapter | None = None,
    ) -> "ImportOrchestrator":
        config = config_repository.load_global_config()
        base_dir = config_repository.locator.project_root
        manager = manager or SQLiteManager()
        return cls(
            config_repository,
            build_broker(config, base_dir, manager),
            build_store(config, base_dir, manager),
            scheduler=scheduler,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self.broker.recover_stalled()
        self.worker_pool.start()
        if self.scheduler is not None:
            self.scheduler.schedule_imports(self.global_config.schedule, self.trigger_scheduled)
            self.scheduler.start()
        self.logger.info("orchestrator_started")

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        self.worker_pool.shutdown(wait=wait)
        self.fetcher.close()
        self.store.close()
        self.logger.info("orchestrator_stopped")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def trigger_import(self, source_urls: Sequence[str], priority: int | None = None) -> str:
        if priority is None:
            priority = self.global_config.queue.default_priority
        return self.broker.enqueue(list(source_urls), priority)

    def trigger_scheduled(self) -> str | None:
        urls = [source.url for source in self.config_repository.list_sources() if source.enabled]
        if not urls:
            self.logger.info("scheduled_import_skipped", reason="no_enabled_sources")
            return None
        task_id = self.trigger_import(urls)
        self.logger.info("scheduled_import_enqueued", task_id=task_id, sources=len(urls))
        return task_id

    def run_import_now(self, url: str) -> ImportLog:
        return self.run_source(url).log

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def execute_task(self, task: ImportTask) -> TaskOutcome:
        """Run every source of ``task`` in order; fail on any whole-run error."""

        errors = []
        for url in task.source_urls:
            try:
                result = self.run_source(url)
            except Exception as exc:
                self.logger.error("source_run_crashed", task_id=task.id, source_url=url, exc_info=True)
                errors.append(f"{url}: {type(exc).__name__}: {exc}")
                continue
            if not result.ok:
                errors.append(f"{url}: {result.whole_run_error}")
        if errors:
            return TaskOutcome.failure("; ".join(errors))
        return TaskOutcome.success()

    def run_source(self, url: str) -> ImportRunResult:
        source = self.config_repository.resolve_source(url)
        config = self.global_config
        run = ImportRun(
            source,
            self.fetcher,
            self.parser,
            self.upserter,
            self.store,
            batch_size=config.batch_size,
            timeout=config.run_timeout_seconds,
            fetch_timeout=config.fetch.timeout_seconds,
            logger=source_logger(source.display_name),
        )
        return run.execute()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def get_queue_stats(self) -> dict[str, int]:
        return self.broker.stats().as_dict()

    def get_import_logs(self, page: int = 1, limit: int = 10) -> dict[str, Any]:
        page = max(1, page)
        limit = max(1, limit)
        logs, total = self.store.query_logs(None, page=page, limit=limit)
        return {
            "logs": [log.to_api() for log in logs],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def get_import_stats(self) -> dict[str, Any]:
        return self.stats.summary(days=self.global_config.stats.trend_days)


__all__ = ["ImportOrchestrator", "build_broker", "build_store"]
