from __future__ import annotations

import httpx
import pytest

from job_importer.config import FetchConfig
from job_importer.engine.fetcher import FetchRequest, Fetcher
from job_importer.errors import FetchError


def _fetcher(**overrides) -> Fetcher:
    config = FetchConfig(retry_delay_seconds=0, **overrides)
    return Fetcher(config)


def _response(status: int, url: str, body: bytes = b"<rss/>") -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", url), content=body)


def test_fetcher_returns_bytes_and_passes_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _fetcher()
    captured: dict = {}

    def fake_request(**kwargs):
        captured.update(kwargs)
        return _response(200, kwargs["url"], b"<rss>ok</rss>")

    monkeypatch.setattr(fetcher._client, "request", fake_request)
    response = fetcher.fetch("https://jobicy.com/?feed=job_feed", timeout=7)
    fetcher.close()

    assert response.content == b"<rss>ok</rss>"
    assert response.status_code == 200
    assert response.attempts == 1
    assert captured["method"] == "GET"
    assert captured["timeout"] == 7


def test_fetcher_retries_transient_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _fetcher(max_retries=2)
    outcomes = [
        httpx.ConnectTimeout("slow"),
        _response(503, "https://feed.example.com"),
        _response(200, "https://feed.example.com"),
    ]

    def fake_request(**kwargs):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(fetcher._client, "request", fake_request)
    response = fetcher.fetch_request(FetchRequest(url="https://feed.example.com"))
    assert response.attempts == 3
    assert outcomes == []


def test_fetcher_gives_up_after_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _fetcher(max_retries=2)
    calls: list[str] = []

    def fake_request(**kwargs):
        calls.append(kwargs["url"])
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(fetcher._client, "request", fake_request)
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("https://down.example.com")
    assert len(calls) == 3
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_fetcher_client_errors_fail_immediately(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _fetcher(max_retries=2)
    calls: list[str] = []

    def fake_request(**kwargs):
        calls.append(kwargs["url"])
        return _response(404, kwargs["url"])

    monkeypatch.setattr(fetcher._client, "request", fake_request)
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("https://missing.example.com")
    assert excinfo.value.status_code == 404
    assert len(calls) == 1
