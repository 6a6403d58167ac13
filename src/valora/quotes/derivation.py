"""Pure normalization and derived-instrument computation.

Nothing in this module performs I/O. Adapters hand over raw records and a
lookup table, and get NormalizedQuote lists back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from valora.core.instruments import CrossRateDerivation, RatioDerivation
from valora.core.models import NormalizedQuote
from valora.quotes.parsing import parse_localized_price

logger = logging.getLogger(__name__)


def calculated(source: str) -> str:
    """Source tag for values computed from another source's quotes."""
    return f"{source}_calculated"


def normalize_records(
    records: Mapping[str, Any],
    key_map: Mapping[str, str],
    *,
    source: str,
    ts: int,
    buy_field: str,
    sell_field: str,
) -> list[NormalizedQuote]:
    """Map provider records to quotes with ``price = (buy + sell) / 2``.

    Keys missing from ``key_map`` are ignored. Mapped keys absent from
    ``records`` and records whose buy or sell field cannot be parsed are
    skipped, and both kinds are logged.
    """
    quotes: list[NormalizedQuote] = []
    dropped: list[str] = []
    missing: list[str] = []

    for key, instrument_id in key_map.items():
        record = records.get(key)
        if record is None:
            missing.append(key)
            continue
        if not isinstance(record, Mapping):
            dropped.append(key)
            continue
        try:
            buy = parse_localized_price(record.get(buy_field))
            sell = parse_localized_price(record.get(sell_field))
        except ValueError:
            dropped.append(key)
            continue

        quotes.append(
            NormalizedQuote(
                instrument_id=instrument_id,
                ts=ts,
                price=(buy + sell) / 2,
                buy=buy,
                sell=sell,
                source=source,
                raw_data=dict(record),
            )
        )

    if missing:
        logger.warning("%s: no record for %s", source, ", ".join(missing))
    if dropped:
        logger.warning("%s: skipped unparseable records %s", source, ", ".join(dropped))
    return quotes


def _scale(value: float | None, ratio: float) -> float | None:
    return value * ratio if value is not None else None


def derive_ratio(
    quotes: Iterable[NormalizedQuote],
    derivations: Iterable[RatioDerivation],
    *,
    source: str,
) -> list[NormalizedQuote]:
    """Compute ``target = base * ratio`` for every derivation whose base is present."""
    by_id = {q.instrument_id: q for q in quotes}
    derived: list[NormalizedQuote] = []
    for d in derivations:
        base = by_id.get(d.base_id)
        if base is None:
            continue
        derived.append(
            NormalizedQuote(
                instrument_id=d.target_id,
                ts=base.ts,
                price=base.price * d.ratio,
                buy=_scale(base.buy, d.ratio),
                sell=_scale(base.sell, d.ratio),
                source=source,
            )
        )
    return derived


def derive_cross_rate(
    quotes: Iterable[NormalizedQuote],
    cross: CrossRateDerivation,
    *,
    source: str,
) -> NormalizedQuote | None:
    """Compute ``numerator / denominator`` from two mid prices.

    Sides are inverted across the legs: buy = num.buy / den.sell and
    sell = num.sell / den.buy, each only when both legs have the side.
    """
    by_id = {q.instrument_id: q for q in quotes}
    num = by_id.get(cross.numerator_id)
    den = by_id.get(cross.denominator_id)
    if num is None or den is None or den.price <= 0:
        return None

    buy = num.buy / den.sell if num.buy and den.sell else None
    sell = num.sell / den.buy if num.sell and den.buy else None
    return NormalizedQuote(
        instrument_id=cross.target_id,
        ts=num.ts,
        price=num.price / den.price,
        buy=buy,
        sell=sell,
        source=source,
    )


def derive_reference_pairs(
    rates: Mapping[str, float],
    key_map: Mapping[str, str],
    *,
    quote_currency: str,
    reference_currency: str,
    source: str,
    ts: int,
) -> list[NormalizedQuote]:
    """Re-express a reference-based rate table as ``XXX/quote_currency`` pairs.

    With rates relative to EUR, ``USDTRY = rates[TRY] / rates[USD]``. The
    reference currency itself has an implicit rate of 1. Buy and sell are
    always None since the table only carries mid rates.
    """
    quote_rate = rates.get(quote_currency)
    if not quote_rate:
        return []

    quotes: list[NormalizedQuote] = []
    for currency, instrument_id in key_map.items():
        rate = 1.0 if currency == reference_currency else rates.get(currency)
        if not rate:
            logger.debug("%s: no rate for %s", source, currency)
            continue
        quotes.append(
            NormalizedQuote(
                instrument_id=instrument_id,
                ts=ts,
                price=quote_rate / rate,
                source=source,
                raw_data={"rate": rate, quote_currency: quote_rate},
            )
        )
    return quotes
