"""Queue of import tasks consumed by the worker pool."""

from .base import ImportTask, QueueStats, RetryPolicy, TaskBroker, TaskOutcome, TaskState
from .sqlite_broker import SQLiteTaskBroker

__all__ = [
    "ImportTask",
    "QueueStats",
    "RetryPolicy",
    "SQLiteTaskBroker",
    "TaskBroker",
    "TaskOutcome",
    "TaskState",
]
