"""Task broker contract: a priority queue of import tasks with retry and retention."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Sequence


class TaskState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ImportTask:
    """A unit of work: import every URL in ``source_urls`` in order."""

    id: str
    source_urls: list[str]
    priority: int = 0
    attempt: int = 0
    enqueued_at: float = 0.0
    state: TaskState = TaskState.WAITING
    available_at: float = 0.0
    finished_at: float | None = None
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "TaskOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "TaskOutcome":
        return cls(ok=False, error=error)


@dataclass(slots=True)
class QueueStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class RetryPolicy:
    """Exponential backoff: the n-th retry waits ``base * 2**n`` seconds."""

    max_attempts: int = 3
    backoff_base: float = 5.0
    keep_completed: int = 100
    keep_failed: int = 50

    def delay_for(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


class TaskBroker(ABC):
    """Durable queue shared by all workers.

    Higher priority tasks are dequeued first, equal priorities in enqueue
    order. Failed tasks are re-queued with exponential backoff until the retry
    policy is exhausted and then parked in the failed set.
    """

    @abstractmethod
    def enqueue(self, source_urls: Sequence[str], priority: int = 0) -> str:
        """Add a task and return its id."""

    @abstractmethod
    def dequeue(self, timeout: float = 0.0) -> ImportTask | None:
        """Claim the next available task, waiting up to ``timeout`` seconds."""

    @abstractmethod
    def ack(self, task_id: str, outcome: TaskOutcome) -> TaskState:
        """Settle an active task and return the state it moved to."""

    @abstractmethod
    def stats(self) -> QueueStats:
        """Count tasks per state."""

    @abstractmethod
    def failed_tasks(self, limit: int = 50) -> list[ImportTask]:
        """Newest tasks of the failed set."""

    @abstractmethod
    def retry_failed(self, task_id: str) -> bool:
        """Move a failed task back to waiting with a fresh attempt counter."""

    @abstractmethod
    def recover_stalled(self) -> int:
        """Return tasks left active by a dead process to waiting."""

    def wake_all(self) -> None:
        """Release consumers blocked in :meth:`dequeue` (used on shutdown)."""
        return None


__all__ = [
    "ImportTask",
    "QueueStats",
    "RetryPolicy",
    "TaskBroker",
    "TaskOutcome",
    "TaskState",
]
