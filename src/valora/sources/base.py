"""Source adapter protocols and the shared rate-limited HTTP base class."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Protocol, runtime_checkable

import httpx
from aiolimiter import AsyncLimiter

from valora.core.config import SourcesConfig
from valora.core.exceptions import NoDataAvailable, RateLimitError, TransportError
from valora.core.models import NormalizedQuote

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES_429 = 3
_DEFAULT_RETRY_AFTER = 5
_MAX_RETRIES_SERVER = 2
_MAX_RETRIES_CONNECTION = 2
_CONNECTION_RETRY_DELAY = 1.0


@runtime_checkable
class CurrentSource(Protocol):
    """A provider that can report the current price of its instruments."""

    @property
    def source(self) -> str: ...

    async def fetch_current(self) -> list[NormalizedQuote]: ...


@runtime_checkable
class HistorySource(Protocol):
    """A provider that serves a historical series per instrument code."""

    @property
    def source(self) -> str: ...

    async def fetch_history(
        self, code: str, start: datetime, end: datetime
    ) -> list[NormalizedQuote]: ...


class HttpSource:
    """Base for adapters that talk to a provider over httpx.

    Owns one AsyncClient and one AsyncLimiter. Use via
    ``async with Adapter(config) as source:`` or call ``close()``.
    """

    source: str = "http"

    def __init__(
        self,
        config: SourcesConfig,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._client = httpx.AsyncClient(
            headers={"User-Agent": config.user_agent, **(headers or {})},
            timeout=httpx.Timeout(timeout or config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    def _now(self) -> int:
        return int(self._clock())

    async def _rate_limited_request(
        self,
        method: str,
        url: str,
        **kwargs: object,
    ) -> httpx.Response:
        """Execute an HTTP request with rate limiting and retry logic.

        Retry policy:
            - HTTP 429: wait for Retry-After (or 5s), retry up to 3 times.
            - HTTP 500/502/503/504: retry up to 2 times with exponential backoff.
            - HTTP 404: raise NoDataAvailable immediately.
            - Other HTTP errors: raise TransportError immediately.
            - Connection errors: retry up to 2 times with 1s delay.
            - Timeouts: raise TransportError immediately.

        Returns:
            httpx.Response with a 2xx status.
        """
        for attempt in range(_MAX_RETRIES_429 + 1):
            try:
                await self._limiter.acquire()
                response = await self._client.request(method, url, **kwargs)
            except httpx.ConnectError as e:
                if attempt < _MAX_RETRIES_CONNECTION:
                    logger.warning(
                        "Connection error on %s, retrying in %.0fs (attempt %d/%d)",
                        url, _CONNECTION_RETRY_DELAY,
                        attempt + 1, _MAX_RETRIES_CONNECTION,
                    )
                    await asyncio.sleep(_CONNECTION_RETRY_DELAY)
                    continue
                raise TransportError(
                    f"Connection failed after retries: {url}",
                    context={"source": self.source, "url": url, "error": str(e)},
                ) from e
            except httpx.TimeoutException as e:
                raise TransportError(
                    f"Request timed out: {url}",
                    context={"source": self.source, "url": url, "error": str(e)},
                ) from e
            except httpx.HTTPError as e:
                raise TransportError(
                    f"HTTP error on {url}: {e}",
                    context={"source": self.source, "url": url, "error": str(e)},
                ) from e

            if response.is_success:
                return response

            if response.status_code == 404:
                raise NoDataAvailable(
                    f"No data at {url}",
                    context={"source": self.source, "url": url, "status_code": 404},
                )

            if response.status_code == 429:
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                if attempt < _MAX_RETRIES_429:
                    logger.warning(
                        "Rate limited (429) on %s, waiting %ds (attempt %d/%d)",
                        url, retry_after, attempt + 1, _MAX_RETRIES_429,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded after {_MAX_RETRIES_429} retries: {url}",
                    context={
                        "source": self.source,
                        "url": url,
                        "status_code": 429,
                        "retry_after": retry_after,
                    },
                )

            if response.status_code in (500, 502, 503, 504):
                if attempt < _MAX_RETRIES_SERVER:
                    delay = 2**attempt
                    logger.warning(
                        "Server error %d on %s, retrying in %ds (attempt %d/%d)",
                        response.status_code, url, delay,
                        attempt + 1, _MAX_RETRIES_SERVER,
                    )
                    await asyncio.sleep(delay)
                    continue

            raise TransportError(
                f"HTTP {response.status_code} from {url}",
                context={
                    "source": self.source,
                    "url": url,
                    "status_code": response.status_code,
                },
            )

        raise TransportError(
            f"Request failed after all retries: {url}",
            context={"source": self.source, "url": url},
        )


def _parse_retry_after(value: str | None) -> int:
    try:
        return max(0, int(value)) if value is not None else _DEFAULT_RETRY_AFTER
    except ValueError:
        return _DEFAULT_RETRY_AFTER
