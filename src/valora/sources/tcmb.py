"""Primary FX feed: the Central Bank of the Republic of Turkey XML bulletin."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone

from bs4 import BeautifulSoup, Tag

from valora.core.config import SourcesConfig
from valora.core.exceptions import NoDataAvailable, ParsingError, SourceError
from valora.core.instruments import FX_CROSS_RATES, TCMB_FX
from valora.core.models import NormalizedQuote
from valora.quotes.derivation import calculated, derive_cross_rate
from valora.quotes.parsing import parse_optional_price
from valora.sources.base import HttpSource

logger = logging.getLogger(__name__)

TCMB_BASE_URL = "https://www.tcmb.gov.tr/kurlar"


def historical_url(day: date, base_url: str = TCMB_BASE_URL) -> str:
    """Bulletin URL for a past day: ``/kurlar/YYYYMM/DDMMYYYY.xml``."""
    return f"{base_url}/{day:%Y%m}/{day:%d%m%Y}.xml"


def _child_text(el: Tag, name: str) -> str | None:
    child = el.find(name)
    return child.get_text(strip=True) if child is not None else None


def day_timestamp(day: date) -> int:
    """Midnight UTC of the bulletin day."""
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


class TcmbSource(HttpSource):
    """Daily forex buying/selling rates against TRY.

    A 404 means the bank published nothing for that day (weekend or
    holiday). ``fetch_current`` surfaces it as NoDataAvailable so the
    orchestrator can fall back; ``fetch_day`` turns it into an empty list.
    """

    source = "tcmb"

    def __init__(
        self,
        config: SourcesConfig,
        *,
        key_map: Mapping[str, str] = TCMB_FX,
        base_url: str = TCMB_BASE_URL,
        **kwargs,
    ) -> None:
        super().__init__(config, headers={"Accept": "application/xml"}, **kwargs)
        self._key_map = key_map
        self._base_url = base_url
        self._history_delay = config.tcmb_history_delay

    async def fetch_current(self) -> list[NormalizedQuote]:
        url = f"{self._base_url}/today.xml"
        try:
            response = await self._rate_limited_request("GET", url)
        except NoDataAvailable:
            logger.warning("TCMB data not available (404), likely weekend/holiday")
            raise
        quotes = self.parse(response.text, ts=self._now())
        logger.info("TCMB forex fetched: %d quotes", len(quotes))
        return quotes

    async def fetch_day(self, day: date) -> list[NormalizedQuote]:
        """Quotes from one past bulletin, stamped with that day's timestamp."""
        url = historical_url(day, self._base_url)
        try:
            response = await self._rate_limited_request("GET", url)
        except NoDataAvailable:
            logger.debug("No TCMB bulletin for %s", day.isoformat())
            return []
        return self.parse(response.text, ts=day_timestamp(day))

    async def fetch_history(
        self, code: str, start: datetime, end: datetime
    ) -> list[NormalizedQuote]:
        """Walk business days from start to end, one bulletin per day.

        ``code`` narrows the result to one instrument id; pass ``"*"`` to
        keep every pair. Days that fail are logged and skipped.
        """
        quotes: list[NormalizedQuote] = []
        fetched = skipped = failed = 0
        day = start.date()
        last = end.date()

        while day <= last:
            if day.weekday() >= 5:
                skipped += 1
                day += timedelta(days=1)
                continue
            try:
                day_quotes = await self.fetch_day(day)
            except SourceError as e:
                logger.warning("TCMB bulletin for %s unusable: %s", day.isoformat(), e)
                day_quotes = []
                failed += 1
            else:
                if day_quotes:
                    fetched += 1
                else:
                    skipped += 1
            if code != "*":
                day_quotes = [q for q in day_quotes if q.instrument_id == code]
            quotes.extend(day_quotes)

            day += timedelta(days=1)
            if self._history_delay > 0:
                await asyncio.sleep(self._history_delay)

        logger.info(
            "TCMB history %s..%s: %d days fetched, %d skipped, %d failed",
            start.date().isoformat(), last.isoformat(), fetched, skipped, failed,
        )
        return quotes

    def parse(self, xml_text: str, *, ts: int) -> list[NormalizedQuote]:
        """Parse a bulletin into mapped pairs plus the EURUSD cross rate."""
        soup = BeautifulSoup(xml_text, "xml")
        currencies = {
            el.get("CurrencyCode"): el
            for el in soup.find_all("Currency")
            if el.get("CurrencyCode")
        }
        if not currencies:
            raise ParsingError(
                "TCMB bulletin has no Currency elements",
                context={"source": self.source, "reason": "Currency"},
            )

        quotes: list[NormalizedQuote] = []
        dropped: list[str] = []
        missing: list[str] = []
        for code, instrument_id in self._key_map.items():
            el = currencies.get(code)
            if el is None:
                missing.append(code)
                continue
            buy = parse_optional_price(_child_text(el, "ForexBuying"))
            sell = parse_optional_price(_child_text(el, "ForexSelling"))
            if buy is None and sell is None:
                dropped.append(code)
                continue
            sides = [v for v in (buy, sell) if v is not None]
            price = sum(sides) / len(sides)
            quotes.append(
                NormalizedQuote(
                    instrument_id=instrument_id,
                    ts=ts,
                    price=price,
                    buy=buy,
                    sell=sell,
                    source=self.source,
                    raw_data={
                        "CurrencyCode": code,
                        "Unit": _child_text(el, "Unit"),
                        "ForexBuying": _child_text(el, "ForexBuying"),
                        "ForexSelling": _child_text(el, "ForexSelling"),
                    },
                )
            )

        if missing:
            logger.warning("TCMB: bulletin has no entry for %s", ", ".join(missing))
        if dropped:
            logger.warning("TCMB: no forex rates for %s", ", ".join(dropped))

        for cross in FX_CROSS_RATES:
            derived = derive_cross_rate(quotes, cross, source=calculated(self.source))
            if derived is not None:
                quotes.append(derived)
        return quotes
