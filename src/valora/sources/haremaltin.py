"""Cloudflare-protected archive: haremaltin.com price history.

The endpoint rejects generic HTTP clients on TLS fingerprint, so requests
go through a pluggable FormTransport. CurlTransport shells out to curl,
which Cloudflare accepts with a valid ``cf_clearance`` cookie; HttpxTransport
is the plain-httpx alternative for when the block is lifted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Callable, Protocol, runtime_checkable
from urllib.parse import urlencode

from valora.core.config import SourcesConfig
from valora.core.exceptions import ParsingError, SourceError, TransportError
from valora.core.instruments import HAREMALTIN_CODES, HAREMALTIN_ONLY_CODES
from valora.core.models import ArchiveTransport, NormalizedQuote
from valora.quotes.parsing import parse_archive_date, parse_optional_price
from valora.sources.base import HttpSource

logger = logging.getLogger(__name__)

HAREMALTIN_BASE_URL = "https://www.haremaltin.com"
HISTORY_PATH = "/ajax/cur/history"

_BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)
_LATEST_WINDOW = timedelta(days=2)


def browser_headers(code: str, base_url: str = HAREMALTIN_BASE_URL) -> dict[str, str]:
    """Header set of a same-origin XHR from the site's chart page."""
    return {
        "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
        "X-Requested-With": "XMLHttpRequest",
        "Origin": base_url,
        "Referer": f"{base_url}/grafik?tip=altin&birim={code}",
        "User-Agent": _BROWSER_UA,
        "Accept": "application/json, text/javascript, */*; q=0.01",
        "sec-ch-ua": '"Not(A:Brand";v="8", "Chromium";v="144", "Google Chrome";v="144"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"macOS"',
        "sec-fetch-dest": "empty",
        "sec-fetch-mode": "cors",
        "sec-fetch-site": "same-origin",
    }


def format_archive_time(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")


@runtime_checkable
class FormTransport(Protocol):
    """POSTs a form and returns the response body as text."""

    async def post_form(
        self,
        url: str,
        form: Mapping[str, str],
        *,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
    ) -> str: ...

    async def close(self) -> None: ...


class HttpxTransport(HttpSource):
    """FormTransport over the shared httpx client stack."""

    source = "haremaltin"

    def __init__(self, config: SourcesConfig, **kwargs) -> None:
        super().__init__(config, timeout=config.archive_timeout, **kwargs)

    async def post_form(
        self,
        url: str,
        form: Mapping[str, str],
        *,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
    ) -> str:
        cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())
        response = await self._rate_limited_request(
            "POST",
            url,
            data=dict(form),
            headers={**headers, "Cookie": cookie_header},
        )
        return response.text


class CurlTransport:
    """FormTransport that runs ``curl`` as a subprocess.

    The HTTP status is appended to stdout with ``-w`` so non-2xx responses
    surface as TransportError instead of being parsed as JSON.
    """

    _STATUS_MARKER = "\n__HTTP_STATUS__:"

    def __init__(self, timeout_seconds: float = 30.0, binary: str = "curl") -> None:
        self._timeout = timeout_seconds
        self._binary = binary

    def build_command(
        self,
        url: str,
        form: Mapping[str, str],
        *,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
    ) -> list[str]:
        cmd = [
            self._binary, "-s", "-S",
            "--max-time", str(int(self._timeout)),
            "-X", "POST", url,
        ]
        for name, value in headers.items():
            cmd += ["-H", f"{name}: {value}"]
        if cookies:
            cmd += ["-b", "; ".join(f"{k}={v}" for k, v in cookies.items())]
        cmd += [
            "--data", urlencode(dict(form)),
            "-w", f"{self._STATUS_MARKER}%{{http_code}}",
        ]
        return cmd

    async def post_form(
        self,
        url: str,
        form: Mapping[str, str],
        *,
        headers: Mapping[str, str],
        cookies: Mapping[str, str],
    ) -> str:
        cmd = self.build_command(url, form, headers=headers, cookies=cookies)
        context = {"source": "haremaltin", "url": url}

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self._timeout + 5,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise TransportError(
                f"curl timed out after {self._timeout}s",
                context={**context, "timeout": self._timeout},
            ) from e
        except FileNotFoundError as e:
            raise TransportError(
                f"{self._binary} not found on PATH",
                context=context,
            ) from e

        if process.returncode != 0:
            raise TransportError(
                f"curl exited with code {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace')[:200]}",
                context={**context, "return_code": process.returncode},
            )

        body, _, status_text = stdout.decode("utf-8", errors="replace").rpartition(
            self._STATUS_MARKER
        )
        status = int(status_text) if status_text.strip().isdigit() else None
        if status is not None and not 200 <= status < 300:
            raise TransportError(
                f"HTTP {status} from {url}",
                context={**context, "status_code": status},
            )
        if not body.strip():
            raise TransportError("Empty response from curl", context=context)
        return body

    async def close(self) -> None:
        return None


def create_transport(config: SourcesConfig) -> FormTransport:
    """Build the archive transport named in config."""
    if config.haremaltin_transport == ArchiveTransport.HTTPX:
        return HttpxTransport(config)
    return CurlTransport(timeout_seconds=config.archive_timeout)


class HaremAltinSource:
    """Daily history per archive code, plus near-live quotes via a short window.

    The ``cf_clearance`` cookie is rotated by an operator out-of-band and
    handed in at construction; nothing here reads it from the environment.
    """

    source = "haremaltin"

    def __init__(
        self,
        transport: FormTransport,
        cf_clearance: str | None,
        *,
        code_map: Mapping[str, str] = HAREMALTIN_CODES,
        live_codes: Sequence[str] = HAREMALTIN_ONLY_CODES,
        base_url: str = HAREMALTIN_BASE_URL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._cf_clearance = cf_clearance
        self._code_map = code_map
        self._live_codes = tuple(live_codes)
        self._base_url = base_url
        self._clock = clock

    @classmethod
    def from_config(cls, config: SourcesConfig, **kwargs) -> HaremAltinSource:
        cookie = config.haremaltin_cf_clearance
        return cls(
            create_transport(config),
            cookie.get_secret_value() if cookie is not None else None,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self._cf_clearance)

    async def __aenter__(self) -> HaremAltinSource:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._transport.close()

    def instrument_for(self, code: str) -> str:
        return self._code_map.get(code, code.lower())

    async def fetch_history(
        self, code: str, start: datetime, end: datetime
    ) -> list[NormalizedQuote]:
        if not self._cf_clearance:
            raise SourceError(
                "haremaltin cf_clearance cookie is not configured",
                context={"source": self.source, "code": code},
            )

        url = f"{self._base_url}{HISTORY_PATH}"
        form = {
            "kod": code,
            "dil_kodu": "tr",
            "tarih1": format_archive_time(start),
            "tarih2": format_archive_time(end),
        }
        logger.info("Fetching haremaltin history %s %s..%s", code, form["tarih1"], form["tarih2"])

        body = await self._transport.post_form(
            url,
            form,
            headers=browser_headers(code, self._base_url),
            cookies={"cf_clearance": self._cf_clearance},
        )
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise ParsingError(
                f"haremaltin response for {code} is not JSON (cookie expired?)",
                context={"source": self.source, "url": url, "reason": "json", "sample": body[:200]},
            ) from e

        quotes = self.parse(code, payload)
        logger.info("haremaltin history %s: %d quotes", code, len(quotes))
        return quotes

    async def fetch_latest(self, codes: Iterable[str]) -> list[NormalizedQuote]:
        """Most recent row per code from a two-day window.

        Codes that fail or come back empty are logged and left out.
        """
        end = datetime.fromtimestamp(self._clock())
        start = end - _LATEST_WINDOW
        latest: list[NormalizedQuote] = []
        for code in codes:
            try:
                quotes = await self.fetch_history(code, start, end)
            except SourceError as e:
                logger.warning("haremaltin latest %s failed: %s", code, e)
                continue
            if quotes:
                latest.append(max(quotes, key=lambda q: q.ts))
        return latest

    async def fetch_current(self) -> list[NormalizedQuote]:
        """Live quotes for the instruments the primary metals feed lacks."""
        return await self.fetch_latest(self._live_codes)

    @staticmethod
    def extract_items(payload: object) -> list:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, Mapping):
            for key in ("data", "sonuc"):
                if isinstance(payload.get(key), list):
                    return payload[key]
            keys = sorted(payload)
        else:
            keys = []
        raise ParsingError(
            "Unknown haremaltin response shape",
            context={"source": "haremaltin", "reason": "items", "keys": keys},
        )

    def parse(self, code: str, payload: object) -> list[NormalizedQuote]:
        instrument_id = self.instrument_for(code)
        quotes: list[NormalizedQuote] = []
        bad_dates = no_prices = 0

        for item in self.extract_items(payload):
            if not isinstance(item, Mapping):
                no_prices += 1
                continue
            ts = parse_archive_date(item.get("kayit_tarihi") or item.get("tarih"))
            if ts is None:
                bad_dates += 1
                continue
            buy = parse_optional_price(item.get("alis"))
            sell = parse_optional_price(item.get("satis"))
            if buy is None and sell is None:
                no_prices += 1
                continue
            sides = [v for v in (buy, sell) if v is not None]
            quotes.append(
                NormalizedQuote(
                    instrument_id=instrument_id,
                    ts=ts,
                    price=sum(sides) / len(sides),
                    buy=buy,
                    sell=sell,
                    source=self.source,
                    raw_data=dict(item),
                )
            )

        if bad_dates or no_prices:
            logger.warning(
                "haremaltin %s: skipped %d rows with bad dates, %d without prices",
                code, bad_dates, no_prices,
            )
        return quotes
