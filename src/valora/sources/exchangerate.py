"""FX fallback feed: api.exchangerate.host (EUR-based mid rates)."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from valora.core.config import SourcesConfig
from valora.core.exceptions import ParsingError
from valora.core.instruments import EXCHANGERATE_FX, FX_CROSS_RATES
from valora.core.models import NormalizedQuote
from valora.quotes.derivation import calculated, derive_cross_rate, derive_reference_pairs
from valora.sources.base import HttpSource

logger = logging.getLogger(__name__)

EXCHANGERATE_URL = "https://api.exchangerate.host/latest"

_REFERENCE = "EUR"
_QUOTE_CURRENCY = "TRY"


class ExchangeRateSource(HttpSource):
    """Mid rates re-derived into ``XXXTRY`` pairs. Never carries buy/sell."""

    source = "exchangerate_host"

    def __init__(
        self,
        config: SourcesConfig,
        *,
        key_map: Mapping[str, str] = EXCHANGERATE_FX,
        url: str = EXCHANGERATE_URL,
        **kwargs,
    ) -> None:
        super().__init__(config, **kwargs)
        self._key_map = key_map
        self._url = url

    @property
    def symbols(self) -> list[str]:
        return [*self._key_map, _QUOTE_CURRENCY]

    async def fetch_current(self) -> list[NormalizedQuote]:
        response = await self._rate_limited_request(
            "GET", self._url, params={"symbols": ",".join(self.symbols)}
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise ParsingError(
                "exchangerate.host response is not JSON",
                context={"source": self.source, "url": self._url, "reason": "json"},
            ) from e

        quotes = self.parse(payload, ts=self._now())
        logger.info("exchangerate.host forex fetched: %d quotes", len(quotes))
        return quotes

    def parse(self, payload: object, *, ts: int) -> list[NormalizedQuote]:
        if not isinstance(payload, Mapping) or payload.get("success") is False:
            raise ParsingError(
                "exchangerate.host reported failure",
                context={"source": self.source, "reason": "success flag"},
            )
        rates = payload.get("rates")
        if not isinstance(rates, Mapping) or not rates.get(_QUOTE_CURRENCY):
            raise ParsingError(
                f"exchangerate.host response has no {_QUOTE_CURRENCY} rate",
                context={"source": self.source, "reason": "rates.TRY"},
            )

        quotes = derive_reference_pairs(
            rates,
            self._key_map,
            quote_currency=_QUOTE_CURRENCY,
            reference_currency=payload.get("base") or _REFERENCE,
            source=self.source,
            ts=ts,
        )
        missing = [c for c, i in self._key_map.items() if i not in {q.instrument_id for q in quotes}]
        if missing:
            logger.warning("exchangerate.host: no rate for %s", ", ".join(missing))

        for cross in FX_CROSS_RATES:
            derived = derive_cross_rate(quotes, cross, source=calculated(self.source))
            if derived is not None:
                quotes.append(derived)
        return quotes
