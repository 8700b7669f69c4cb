from __future__ import annotations

import pytest
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from job_importer.config import ScheduleConfig, ScheduleType
from job_importer.scheduler import SCHEDULED_JOB_ID, APSchedulerAdapter


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, replace_existing, max_instances, coalesce):  # noqa: A002
        self.calls.append(
            {
                "event": "add",
                "id": id,
                "trigger": trigger,
                "callback": callback,
                "replace_existing": replace_existing,
                "max_instances": max_instances,
            }
        )

    def remove_job(self, job_id):
        self.calls.append({"event": "remove", "id": job_id})
        raise JobLookupError(job_id)

    def get_jobs(self):
        return []

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})


def test_build_triggers() -> None:
    cron = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="*/5 * * * *"))
    assert isinstance(cron, CronTrigger)
    interval = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=30))
    assert isinstance(interval, IntervalTrigger)
    assert interval.interval.total_seconds() == 30
    kwargs = APSchedulerAdapter.build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2}))
    assert kwargs.interval.total_seconds() == 120


def test_schedule_imports_registers_single_job() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)  # type: ignore[arg-type]

    def enqueue() -> None:
        return None

    assert adapter.schedule_imports(ScheduleConfig(value=600), enqueue)
    adapter.start()
    adapter.start()
    adapter.shutdown()

    added = stub.calls[0]
    assert added["id"] == SCHEDULED_JOB_ID
    assert added["callback"] is enqueue
    assert added["replace_existing"] and added["max_instances"] == 1
    assert isinstance(added["trigger"], IntervalTrigger)
    assert [call["event"] for call in stub.calls[1:]] == ["started", "shutdown"]


def test_disabled_schedule_removes_job() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)  # type: ignore[arg-type]
    assert not adapter.schedule_imports(ScheduleConfig(enabled=False), lambda: None)
    assert stub.calls == [{"event": "remove", "id": SCHEDULED_JOB_ID}]


def test_invalid_interval_value() -> None:
    schedule = ScheduleConfig(type=ScheduleType.INTERVAL, value=10)
    schedule.value = "fast"
    with pytest.raises(ValueError):
        APSchedulerAdapter.build_trigger(schedule)
