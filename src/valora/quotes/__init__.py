"""valora.quotes: Price parsing, derivation, and read-side shaping."""

from valora.quotes.cache import TTLCache
from valora.quotes.derivation import (
    calculated,
    derive_cross_rate,
    derive_ratio,
    derive_reference_pairs,
    normalize_records,
)
from valora.quotes.history import change_percent, shape_history
from valora.quotes.parsing import (
    TurkishDateParser,
    parse_archive_date,
    parse_localized_price,
    parse_optional_price,
)

__all__ = [
    "TTLCache",
    "TurkishDateParser",
    "calculated",
    "change_percent",
    "derive_cross_rate",
    "derive_ratio",
    "derive_reference_pairs",
    "normalize_records",
    "parse_archive_date",
    "parse_localized_price",
    "parse_optional_price",
    "shape_history",
]
