"""Pytest configuration providing shared fixtures for the importer test-suite."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest

from job_importer.broker import RetryPolicy, SQLiteTaskBroker
from job_importer.config import ConfigLocator, ConfigRepository, SourceConfig
from job_importer.engine import FeedParser, FetchResponse, Upserter
from job_importer.errors import FetchError
from job_importer.infra import SQLiteManager
from job_importer.store import SQLiteImportStore


@pytest.fixture(scope="session", autouse=True)
def importer_home(tmp_path_factory: pytest.TempPathFactory) -> Iterable[Path]:
    home = tmp_path_factory.mktemp("importer-home")
    previous = os.environ.get("JOB_IMPORTER_HOME")
    os.environ["JOB_IMPORTER_HOME"] = str(home)
    yield home
    if previous is None:
        os.environ.pop("JOB_IMPORTER_HOME", None)
    else:
        os.environ["JOB_IMPORTER_HOME"] = previous


class FakeClock:
    """Manually advanced epoch-seconds clock for the broker."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubFetcher:
    """Serve canned payloads per URL; exceptions in the mapping are raised."""

    def __init__(self, payloads: dict[str, Any] | None = None) -> None:
        self.payloads: dict[str, Any] = dict(payloads or {})
        self.calls: list[tuple[str, float | None]] = []

    def fetch(self, url: str, timeout: float | None = None) -> FetchResponse:
        self.calls.append((url, timeout))
        payload = self.payloads.get(url)
        if payload is None:
            raise FetchError(f"HTTP 404 for {url}", url=url, status_code=404)
        if isinstance(payload, Exception):
            raise payload
        content = payload.encode("utf-8") if isinstance(payload, str) else payload
        return FetchResponse(url=url, status_code=200, content=content, headers={})

    def close(self) -> None:
        return None


def rss_item(
    guid: str | None,
    title: str,
    company: str = "Acme",
    *,
    link: str | None = None,
    location: str = "Remote",
    extra: str = "",
) -> str:
    parts = ["<item>"]
    if guid is not None:
        parts.append(f"<guid>{guid}</guid>")
    if title:
        parts.append(f"<title>{title}</title>")
    if company:
        parts.append(f"<job_listing:company>{company}</job_listing:company>")
    parts.append(f"<link>{link or f'https://jobs.example.com/{guid or title}'}</link>")
    if location:
        parts.append(f"<job_listing:location>{location}</job_listing:location>")
    parts.append("<pubDate>Mon, 06 May 2024 10:00:00 +0000</pubDate>")
    parts.append(extra)
    parts.append("</item>")
    return "".join(parts)


def rss_feed(items: Sequence[str]) -> bytes:
    body = "".join(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:job_listing="https://jobicy.com/job_listing">'
        f"<channel><title>Jobs</title>{body}</channel></rss>"
    ).encode("utf-8")


@pytest.fixture
def make_rss() -> Callable[[Sequence[str]], bytes]:
    return rss_feed


@pytest.fixture
def item() -> Callable[..., str]:
    return rss_item


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def utc_clock() -> Callable[..., Any]:
    """A settable aware-datetime clock for stats and upserts."""

    class _Clock:
        def __init__(self) -> None:
            self.now = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)

        def __call__(self) -> datetime:
            return self.now

        def advance(self, **kwargs: float) -> None:
            self.now += timedelta(**kwargs)

    return _Clock()


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("JOB_IMPORTER_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {"url": "https://jobicy.com/?feed=job_feed", "name": "Jobicy"}
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def sqlite_manager() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def sqlite_store(tmp_path: Path, sqlite_manager: SQLiteManager) -> SQLiteImportStore:
    return SQLiteImportStore(sqlite_manager, tmp_path / "jobs.db")


@pytest.fixture
def broker_factory(
    tmp_path: Path, sqlite_manager: SQLiteManager, fake_clock: FakeClock
) -> Callable[..., SQLiteTaskBroker]:
    def _builder(**policy: Any) -> SQLiteTaskBroker:
        return SQLiteTaskBroker(
            sqlite_manager,
            tmp_path / "queue.db",
            RetryPolicy(**policy),
            poll_interval=0.05,
            clock=fake_clock,
        )

    return _builder


@pytest.fixture
def broker(broker_factory: Callable[..., SQLiteTaskBroker]) -> SQLiteTaskBroker:
    return broker_factory()


@pytest.fixture
def parser() -> FeedParser:
    return FeedParser()


@pytest.fixture
def upserter(sqlite_store: SQLiteImportStore, utc_clock) -> Upserter:
    return Upserter(sqlite_store, clock=utc_clock)


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()
