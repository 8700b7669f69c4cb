"""HTTP fetching of feed documents with transient-failure retry."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict

import httpx
import structlog

from ..config import FetchConfig
from ..errors import FetchError


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    timeout: float | None = None
    headers: dict[str, str] | None = None


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    content: bytes
    headers: Dict[str, str]
    attempts: int = 1
    raw: httpx.Response | None = field(repr=False, default=None)


class Fetcher:
    """Download raw feed bytes, retrying timeouts, transport errors and 5xx."""

    def __init__(
        self,
        config: FetchConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.logger = logger or structlog.get_logger("job_importer.fetcher")
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=self.config.timeout_seconds,
            headers={
                "User-Agent": self.config.user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.8",
            },
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str, timeout: float | None = None) -> FetchResponse:
        return self.fetch_request(FetchRequest(url=url, timeout=timeout))

    def fetch_request(self, request: FetchRequest) -> FetchResponse:
        max_attempts = max(1, self.config.max_retries + 1)
        timeout = request.timeout or self.config.timeout_seconds
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                response = self._client.request(
                    method="GET",
                    url=request.url,
                    headers=request.headers,
                    timeout=timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                self.logger.warning(
                    "fetch_error", url=request.url, attempt=attempt, error=str(exc)
                )
                last_error = exc
            else:
                if self._is_transient(response):
                    self.logger.warning(
                        "fetch_error",
                        url=request.url,
                        attempt=attempt,
                        status=response.status_code,
                    )
                    last_error = FetchError(
                        f"Unexpected status {response.status_code}",
                        url=request.url,
                        status_code=response.status_code,
                    )
                elif response.status_code >= 400:
                    raise FetchError(
                        f"HTTP {response.status_code} for {request.url}",
                        url=request.url,
                        status_code=response.status_code,
                    )
                else:
                    return FetchResponse(
                        url=str(response.url),
                        status_code=response.status_code,
                        content=response.content,
                        headers=dict(response.headers),
                        attempts=attempt,
                        raw=response,
                    )
            if attempt < max_attempts and self.config.retry_delay_seconds > 0:
                time.sleep(self.config.retry_delay_seconds * attempt)

        status_code = getattr(last_error, "status_code", None)
        raise FetchError(
            f"Fetch failed after {max_attempts} attempts: {request.url}",
            url=request.url,
            status_code=status_code,
        ) from last_error

    @staticmethod
    def _is_transient(response: httpx.Response) -> bool:
        return response.status_code >= 500


__all__ = ["Fetcher", "FetchRequest", "FetchResponse"]
