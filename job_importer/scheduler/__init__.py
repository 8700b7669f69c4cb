"""Scheduling of recurring imports."""

from .apsched_adapter import SCHEDULED_JOB_ID, APSchedulerAdapter

__all__ = ["APSchedulerAdapter", "SCHEDULED_JOB_ID"]
