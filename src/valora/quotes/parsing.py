"""Parsers for the localized numbers and dates found in provider payloads."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import ClassVar

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9,.\-]")


def parse_localized_price(text: str | float | int | None) -> float:
    """Parse a price in either Turkish or dot-decimal notation.

    "6.942,61" -> 6942.61, "$5.096,79" -> 5096.79, "7356.1000" -> 7356.1.
    A comma anywhere marks Turkish notation: dots are thousand separators
    and the comma is the decimal point. Otherwise the string is dot-decimal.

    Raises:
        ValueError: If the value is not a string or number, nothing numeric
            is left after cleaning, or the result is not finite.
    """
    if text is None:
        raise ValueError("price is missing")
    if isinstance(text, bool):
        raise ValueError(f"not a price: {text!r}")
    if isinstance(text, (int, float)):
        try:
            value = float(text)
        except OverflowError as e:
            raise ValueError(f"price is not finite: {text!r}") from e
    elif isinstance(text, str):
        cleaned = _NON_NUMERIC.sub("", text.strip())
        if "," in cleaned:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        if not cleaned or cleaned in {".", "-"}:
            raise ValueError(f"not a price: {text!r}")
        value = float(cleaned)
    else:
        raise ValueError(f"not a price: {type(text).__name__}")

    # "9" * 400 parses to inf
    if not math.isfinite(value):
        raise ValueError(f"price is not finite: {text!r}")
    return value


def parse_optional_price(text: str | float | int | None) -> float | None:
    """Like parse_localized_price, but blanks and non-positive values become None."""
    if text is None or (isinstance(text, str) and not text.strip()):
        return None
    try:
        value = parse_localized_price(text)
    except ValueError:
        return None
    return value if value > 0 else None


# --- Dates ---

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DOTTED_DATE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})")
_SLASHED_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})")


def _noon_utc(year: int, month: int, day: int) -> int | None:
    try:
        return int(datetime(year, month, day, 12, tzinfo=timezone.utc).timestamp())
    except ValueError:
        return None


def parse_archive_date(text: str | None) -> int | None:
    """Parse "2021-02-22[ ...]", "22.02.2021" or "22/02/2021" to noon UTC.

    Only the calendar day is kept; archive rows are daily closes.
    Returns None for anything else, non-strings included.
    """
    if not isinstance(text, str) or not text:
        return None
    text = text.strip()

    m = _ISO_DATE.match(text)
    if m:
        return _noon_utc(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    for pattern in (_DOTTED_DATE, _SLASHED_DATE):
        m = pattern.match(text)
        if m:
            return _noon_utc(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    return None


class TurkishDateParser:
    """Parses dates written as "23 Şubat 2023", tolerating mojibake.

    Turkish letters are folded to ASCII, any remaining non-ASCII bytes are
    dropped. Months match exactly, then on their first three letters, then
    on a suffix, so a mangled "Şubat" that comes out as "ubat" still parses.
    """

    MONTHS: ClassVar[dict[str, int]] = {
        "ocak": 1,
        "subat": 2,
        "mart": 3,
        "nisan": 4,
        "mayis": 5,
        "haziran": 6,
        "temmuz": 7,
        "agustos": 8,
        "eylul": 9,
        "ekim": 10,
        "kasim": 11,
        "aralik": 12,
    }

    _FOLD: ClassVar[dict[int, str]] = str.maketrans(
        {
            "Ş": "S",
            "ş": "s",
            "ı": "i",
            "İ": "I",
            "Ğ": "G",
            "ğ": "g",
            "Ü": "U",
            "ü": "u",
            "Ö": "O",
            "ö": "o",
            "Ç": "C",
            "ç": "c",
        }
    )

    _NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")

    @classmethod
    def fold(cls, text: str) -> str:
        return cls._NON_PRINTABLE.sub("", text.translate(cls._FOLD))

    @classmethod
    def month_index(cls, name: str) -> int | None:
        name = name.lower()
        if name in cls.MONTHS:
            return cls.MONTHS[name]
        prefix = name[:3]
        if len(prefix) < 3:
            return None
        for key, index in cls.MONTHS.items():
            if key.startswith(prefix):
                return index
        # a lost leading letter: "ubat" for "subat"
        for key, index in cls.MONTHS.items():
            if key.endswith(name):
                return index
        return None

    @classmethod
    def parse(cls, text: str) -> int | None:
        """Return the noon-UTC timestamp for the date, or None."""
        parts = cls.fold(text).split()
        if len(parts) != 3:
            return None
        day_str, month_str, year_str = parts
        if not (day_str.isdigit() and year_str.isdigit()):
            return None
        month = cls.month_index(month_str)
        if month is None:
            return None
        return _noon_utc(int(year_str), month, int(day_str))
