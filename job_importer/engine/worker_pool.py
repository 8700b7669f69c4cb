"""Fixed-size pool of worker threads draining the task broker."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Lock
from typing import Callable

import structlog

from ..broker import ImportTask, TaskBroker, TaskOutcome, TaskState

TaskHandler = Callable[[ImportTask], TaskOutcome]


class WorkerPool:
    """Run ``concurrency`` long-lived dequeue loops on a thread pool.

    Each loop claims a task, hands it to ``handler`` and acks the returned
    outcome. Exceptions escaping the handler are logged and acked as failures
    so a task is never left active.
    """

    def __init__(
        self,
        broker: TaskBroker,
        handler: TaskHandler,
        concurrency: int = 5,
        poll_interval: float = 1.0,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.broker = broker
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.logger = (logger or structlog.get_logger("job_importer.workers")).bind(
            component="worker_pool"
        )
        self._stop = Event()
        self._lock = Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._loops: list[Future] = []

    @property
    def running(self) -> bool:
        return self._executor is not None and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                return
            self._stop.clear()
            self._executor = ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix="importer-worker"
            )
            self._loops = [
                self._executor.submit(self._loop, index) for index in range(self.concurrency)
            ]
        self.logger.info("workers_started", concurrency=self.concurrency)

    def shutdown(self, wait: bool = True) -> None:
        """Stop dequeuing; with ``wait`` block until in-flight tasks are acked."""

        with self._lock:
            executor, self._executor = self._executor, None
            self._stop.set()
        if executor is None:
            return
        self.broker.wake_all()
        executor.shutdown(wait=wait)
        self._loops = []
        self.logger.info("workers_stopped", waited=wait)

    def process_next(self, timeout: float = 0.0) -> TaskState | None:
        """Claim and run a single task in the calling thread."""

        task = self.broker.dequeue(timeout)
        if task is None:
            return None
        outcome = self._run_supervised(task)
        return self.broker.ack(task.id, outcome)

    def drain(self, max_tasks: int | None = None) -> int:
        """Process available tasks synchronously until the queue is empty."""

        processed = 0
        while max_tasks is None or processed < max_tasks:
            if self.process_next(0.0) is None:
                break
            processed += 1
        return processed

    # ------------------------------------------------------------------
    def _loop(self, index: int) -> None:
        log = self.logger.bind(worker=index)
        while not self._stop.is_set():
            try:
                self.process_next(self.poll_interval)
            except Exception:
                log.error("worker_loop_error", exc_info=True)
                self._stop.wait(self.poll_interval)

    def _run_supervised(self, task: ImportTask) -> TaskOutcome:
        log = self.logger.bind(task_id=task.id, attempt=task.attempt)
        log.info("task_started", sources=len(task.source_urls), priority=task.priority)
        try:
            outcome = self.handler(task)
        except Exception as exc:
            log.error("task_crashed", error=str(exc), exc_info=True)
            return TaskOutcome.failure(f"{type(exc).__name__}: {exc}")
        log.info("task_finished", ok=outcome.ok, error=outcome.error)
        return outcome


__all__ = ["TaskHandler", "WorkerPool"]
