"""SQLite-backed task broker."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Sequence

import structlog

from ..errors import StorageError
from ..infra import SQLiteManager
from .base import ImportTask, QueueStats, RetryPolicy, TaskBroker, TaskOutcome, TaskState


class SQLiteTaskBroker(TaskBroker):
    """Persist tasks in the ``import_tasks`` table.

    Claims and acks run under the connection lock of the queue database, so a
    task is handed to at most one worker. ``dequeue`` blocks on a condition
    that :meth:`enqueue` and :meth:`retry_failed` notify, waking up at least
    every ``poll_interval`` seconds to pick up delayed tasks whose backoff has
    elapsed.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        policy: RetryPolicy | None = None,
        *,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.policy = policy or RetryPolicy()
        self.poll_interval = poll_interval
        self.clock = clock
        self.logger = (logger or structlog.get_logger("job_importer.broker")).bind(
            component="broker"
        )
        self._conn = manager.connect(db_path)
        self._condition = threading.Condition(manager.lock(db_path))

    # ------------------------------------------------------------------
    def enqueue(self, source_urls: Sequence[str], priority: int = 0) -> str:
        urls = [url for url in source_urls if url]
        if not urls:
            raise ValueError("a task needs at least one source url")
        task_id = uuid.uuid4().hex
        now = self.clock()
        with self._condition:
            self._execute(
                """
                INSERT INTO import_tasks (id, source_urls, priority, attempt, state, enqueued_at, available_at)
                VALUES (?, ?, ?, 0, ?, ?, ?)
                """,
                (task_id, json.dumps(urls), int(priority), TaskState.WAITING.value, now, now),
            )
            self._condition.notify()
        self.logger.info("task_enqueued", task_id=task_id, priority=priority, sources=len(urls))
        return task_id

    def dequeue(self, timeout: float = 0.0) -> ImportTask | None:
        deadline = time.monotonic() + max(0.0, timeout)
        with self._condition:
            while True:
                task = self._claim()
                if task is not None:
                    return task
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(min(remaining, self.poll_interval))

    def ack(self, task_id: str, outcome: TaskOutcome) -> TaskState:
        with self._condition:
            task = self._get(task_id)
            if task is None:
                raise KeyError(f"unknown task {task_id}")
            if task.state is not TaskState.ACTIVE:
                self.logger.warning("task_ack_ignored", task_id=task_id, state=task.state.value)
                return task.state
            now = self.clock()
            if outcome.ok:
                self._execute(
                    "UPDATE import_tasks SET state = ?, finished_at = ?, last_error = NULL WHERE id = ?",
                    (TaskState.COMPLETED.value, now, task_id),
                )
                self._prune(TaskState.COMPLETED, self.policy.keep_completed)
                self.logger.info("task_completed", task_id=task_id, attempt=task.attempt)
                return TaskState.COMPLETED
            if self.policy.should_retry(task.attempt):
                attempt = task.attempt + 1
                delay = self.policy.delay_for(attempt)
                self._execute(
                    """
                    UPDATE import_tasks
                    SET state = ?, attempt = ?, available_at = ?, last_error = ?
                    WHERE id = ?
                    """,
                    (TaskState.DELAYED.value, attempt, now + delay, outcome.error, task_id),
                )
                self.logger.warning(
                    "task_retry", task_id=task_id, attempt=attempt, delay=delay, error=outcome.error
                )
                return TaskState.DELAYED
            self._execute(
                "UPDATE import_tasks SET state = ?, finished_at = ?, last_error = ? WHERE id = ?",
                (TaskState.FAILED.value, now, outcome.error, task_id),
            )
            self._prune(TaskState.FAILED, self.policy.keep_failed)
            self.logger.error(
                "task_failed", task_id=task_id, attempt=task.attempt, error=outcome.error
            )
            return TaskState.FAILED

    def stats(self) -> QueueStats:
        with self._condition:
            self._promote_due()
            rows = self._conn.execute(
                "SELECT state, COUNT(*) AS total FROM import_tasks GROUP BY state"
            ).fetchall()
        stats = QueueStats()
        for row in rows:
            setattr(stats, row["state"], int(row["total"]))
        return stats

    def failed_tasks(self, limit: int = 50) -> list[ImportTask]:
        with self._condition:
            rows = self._conn.execute(
                """
                SELECT * FROM import_tasks WHERE state = ?
                ORDER BY finished_at DESC, seq DESC LIMIT ?
                """,
                (TaskState.FAILED.value, limit),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def retry_failed(self, task_id: str) -> bool:
        with self._condition:
            cursor = self._execute(
                """
                UPDATE import_tasks
                SET state = ?, attempt = 0, available_at = ?, finished_at = NULL
                WHERE id = ? AND state = ?
                """,
                (TaskState.WAITING.value, self.clock(), task_id, TaskState.FAILED.value),
            )
            moved = cursor.rowcount > 0
            if moved:
                self._condition.notify()
        if moved:
            self.logger.info("task_requeued", task_id=task_id)
        return moved

    def recover_stalled(self) -> int:
        with self._condition:
            cursor = self._execute(
                "UPDATE import_tasks SET state = ?, available_at = ? WHERE state = ?",
                (TaskState.WAITING.value, self.clock(), TaskState.ACTIVE.value),
            )
            recovered = cursor.rowcount
            if recovered:
                self._condition.notify_all()
        if recovered:
            self.logger.warning("tasks_recovered", count=recovered)
        return recovered

    def get(self, task_id: str) -> ImportTask | None:
        with self._condition:
            return self._get(task_id)

    def wake_all(self) -> None:
        with self._condition:
            self._condition.notify_all()

    # ------------------------------------------------------------------
    def _claim(self) -> ImportTask | None:
        self._promote_due()
        row = self._conn.execute(
            """
            SELECT * FROM import_tasks WHERE state = ?
            ORDER BY priority DESC, seq ASC LIMIT 1
            """,
            (TaskState.WAITING.value,),
        ).fetchone()
        if row is None:
            return None
        self._execute(
            "UPDATE import_tasks SET state = ? WHERE id = ?",
            (TaskState.ACTIVE.value, row["id"]),
        )
        task = self._row_to_task(row)
        task.state = TaskState.ACTIVE
        return task

    def _promote_due(self) -> None:
        self._execute(
            "UPDATE import_tasks SET state = ? WHERE state = ? AND available_at <= ?",
            (TaskState.WAITING.value, TaskState.DELAYED.value, self.clock()),
        )

    def _prune(self, state: TaskState, keep: int) -> None:
        cursor = self._execute(
            """
            DELETE FROM import_tasks WHERE state = ? AND seq NOT IN (
                SELECT seq FROM import_tasks WHERE state = ?
                ORDER BY finished_at DESC, seq DESC LIMIT ?
            )
            """,
            (state.value, state.value, max(0, keep)),
        )
        if cursor.rowcount:
            self.logger.debug("tasks_pruned", state=state.value, count=cursor.rowcount)

    def _get(self, task_id: str) -> ImportTask | None:
        row = self._conn.execute("SELECT * FROM import_tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def _execute(self, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StorageError(f"queue operation failed: {exc}") from exc
        return cursor

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> ImportTask:
        return ImportTask(
            id=row["id"],
            source_urls=json.loads(row["source_urls"]),
            priority=row["priority"],
            attempt=row["attempt"],
            enqueued_at=row["enqueued_at"],
            state=TaskState(row["state"]),
            available_at=row["available_at"],
            finished_at=row["finished_at"],
            last_error=row["last_error"],
        )


__all__ = ["SQLiteTaskBroker"]
