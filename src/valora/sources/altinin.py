"""Secondary archive: altin.in daily chart data (sell side only)."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime

from valora.core.config import SourcesConfig
from valora.core.exceptions import ParsingError
from valora.core.instruments import ALTININ_CODES
from valora.core.models import NormalizedQuote
from valora.quotes.parsing import TurkishDateParser
from valora.sources.base import HttpSource

logger = logging.getLogger(__name__)

ALTININ_URL = "https://altin.in/grafikur.asp"

_SELL_ARRAY = re.compile(r"satis:\[([^\]]+)\]")
_DATE_ARRAY = re.compile(r"tarih:\[([^\]]+)\]")
_QUOTED = re.compile(r'"([^"]*)"')

_DAY = 86_400


class AltinInSource(HttpSource):
    """Chart payload scraped from a JavaScript object literal.

    The page carries parallel ``satis:[...]`` and ``tarih:[...]`` arrays in
    windows-1254. Only a sell price exists, so ``price = sell`` and buy is None.
    """

    source = "altin_in"

    def __init__(
        self,
        config: SourcesConfig,
        *,
        code_map: Mapping[str, str] = ALTININ_CODES,
        url: str = ALTININ_URL,
        **kwargs,
    ) -> None:
        super().__init__(
            config,
            headers={"User-Agent": "Mozilla/5.0"},
            timeout=config.archive_timeout,
            **kwargs,
        )
        self._code_map = code_map
        self._url = url

    def instrument_for(self, code: str) -> str:
        return self._code_map.get(code, code.lower())

    async def fetch_days(self, code: str, days: int) -> list[NormalizedQuote]:
        """The last ``days`` days of history for an altin.in ``kur`` code."""
        params = {
            "did": "flash_grafik",
            "ca": "1",
            "islem": "gunluk",
            "gun": str(days),
            "sa": "sat",
            "kur": code,
            "banka": "altin",
            "k": "",
        }
        logger.info("Fetching altin.in history %s (%d days)", code, days)
        response = await self._rate_limited_request("GET", self._url, params=params)
        text = response.content.decode("cp1254", errors="replace")
        return self.parse(code, text)

    async def fetch_history(
        self, code: str, start: datetime, end: datetime
    ) -> list[NormalizedQuote]:
        # The endpoint only knows "last N days", so ask for enough and trim.
        days = max(1, math.ceil((self._now() - start.timestamp()) / _DAY))
        quotes = await self.fetch_days(code, days)
        lo, hi = start.timestamp(), end.timestamp()
        return [q for q in quotes if lo <= q.ts <= hi]

    def parse(self, code: str, text: str) -> list[NormalizedQuote]:
        sell_match = _SELL_ARRAY.search(text)
        date_match = _DATE_ARRAY.search(text)
        if not sell_match or not date_match:
            raise ParsingError(
                f"altin.in response for {code} has no satis/tarih arrays",
                context={"source": self.source, "reason": "satis/tarih", "code": code},
            )

        sells = [s.strip() for s in sell_match.group(1).split(",")]
        dates = _QUOTED.findall(date_match.group(1))
        if len(sells) != len(dates):
            logger.warning(
                "altin.in %s: %d prices but %d dates", code, len(sells), len(dates)
            )

        instrument_id = self.instrument_for(code)
        quotes: list[NormalizedQuote] = []
        bad_dates = bad_prices = 0
        for raw_sell, raw_date in zip(sells, dates):
            ts = TurkishDateParser.parse(raw_date)
            if ts is None:
                bad_dates += 1
                continue
            try:
                sell = float(raw_sell)
            except ValueError:
                bad_prices += 1
                continue
            if not math.isfinite(sell) or sell <= 0:
                bad_prices += 1
                continue
            quotes.append(
                NormalizedQuote(
                    instrument_id=instrument_id,
                    ts=ts,
                    price=sell,
                    sell=sell,
                    source=self.source,
                    raw_data={"tarih": raw_date, "satis": sell},
                )
            )

        if bad_dates or bad_prices:
            logger.warning(
                "altin.in %s: skipped %d unparseable dates, %d bad prices",
                code, bad_dates, bad_prices,
            )
        logger.info("altin.in %s parsed: %d quotes", code, len(quotes))
        return quotes
