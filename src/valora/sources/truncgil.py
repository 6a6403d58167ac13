"""Primary metals feed: finans.truncgil.com."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from valora.core.config import SourcesConfig
from valora.core.exceptions import ParsingError
from valora.core.instruments import METAL_DERIVATIONS, TRUNCGIL_METALS
from valora.core.models import NormalizedQuote
from valora.quotes.derivation import calculated, derive_ratio, normalize_records
from valora.sources.base import HttpSource

logger = logging.getLogger(__name__)

TRUNCGIL_URL = "https://finans.truncgil.com/today.json"

_BUY_FIELD = "Alış"
_SELL_FIELD = "Satış"


class TruncgilSource(HttpSource):
    """Current metal prices in Turkish decimal notation.

    The payload is a flat mapping of provider keys (``"gram-altin"``) to
    records carrying ``Alış`` / ``Satış`` strings such as ``"6.942,61"``.
    Derived instruments are appended with the ``truncgil_calculated`` tag.
    """

    source = "truncgil"

    def __init__(
        self,
        config: SourcesConfig,
        *,
        key_map: Mapping[str, str] = TRUNCGIL_METALS,
        url: str = TRUNCGIL_URL,
        **kwargs,
    ) -> None:
        super().__init__(config, headers={"Accept": "application/json"}, **kwargs)
        self._key_map = key_map
        self._url = url

    async def fetch_current(self) -> list[NormalizedQuote]:
        response = await self._rate_limited_request("GET", self._url)
        try:
            payload = response.json()
        except ValueError as e:
            raise ParsingError(
                "Truncgil response is not JSON",
                context={"source": self.source, "url": self._url, "reason": "json"},
            ) from e

        quotes = self.parse(payload, ts=self._now())
        logger.info("Truncgil metals fetched: %d quotes", len(quotes))
        return quotes

    def parse(self, payload: object, *, ts: int) -> list[NormalizedQuote]:
        """Turn a today.json payload into measured plus derived quotes."""
        if not isinstance(payload, Mapping):
            raise ParsingError(
                f"Truncgil payload must be an object, got {type(payload).__name__}",
                context={"source": self.source, "reason": "top-level shape"},
            )

        quotes = normalize_records(
            payload,
            self._key_map,
            source=self.source,
            ts=ts,
            buy_field=_BUY_FIELD,
            sell_field=_SELL_FIELD,
        )
        measured = {q.instrument_id for q in quotes}
        derived = [
            q
            for q in derive_ratio(quotes, METAL_DERIVATIONS, source=calculated(self.source))
            if q.instrument_id not in measured
        ]
        return quotes + derived
