"""Static instrument tables.

One mapping per provider, so a renamed upstream field only touches its own
table. All tables are read-only; adapters receive them at construction.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, NamedTuple

from valora.core.models import Category, Instrument

# Truncgil today.json key -> instrument id
TRUNCGIL_METALS: Mapping[str, str] = MappingProxyType(
    {
        "gram-altin": "gram",
        "ceyrek-altin": "ceyrek",
        "ons": "ons",
        "yarim-altin": "yarim",
        "tam-altin": "tam",
        "ata-altin": "ata",
        "gram-has-altin": "has",
        "22-ayar-bilezik": "22ayar",
        "14-ayar-altin": "14ayar",
        "gremse-altin": "gremse",
        "gumus": "gumus_gram",
        "besli-altin": "ata5",
        "gram-platin": "platin_gram",
        "gram-paladyum": "paladyum_gram",
    }
)

# TCMB CurrencyCode -> instrument id
TCMB_FX: Mapping[str, str] = MappingProxyType(
    {
        "USD": "USDTRY",
        "EUR": "EURTRY",
        "GBP": "GBPTRY",
        "CHF": "CHFTRY",
        "AUD": "AUDTRY",
        "CAD": "CADTRY",
        "SAR": "SARTRY",
        "JPY": "JPYTRY",
    }
)

# exchangerate.host currency -> instrument id (rates are EUR-based)
EXCHANGERATE_FX: Mapping[str, str] = TCMB_FX

# Haremaltin archive code -> instrument id
HAREMALTIN_CODES: Mapping[str, str] = MappingProxyType(
    {
        "AYAR14": "14ayar",
        "AYAR22": "22ayar",
        "ALTIN": "has",
        "ONS": "ons",
        "KULCEALTIN": "gram",
        "CEYREK_YENI": "ceyrek",
        "CEYREK_ESKI": "ceyrek_eski",
        "YARIM_YENI": "yarim",
        "YARIM_ESKI": "yarim_eski",
        "TEK_YENI": "tam",
        "TEK_ESKI": "tam_eski",
        "ATA_YENI": "ata",
        "ATA_ESKI": "ata_eski",
        "ATA5_YENI": "ata5",
        "ATA5_ESKI": "ata5_eski",
        "GREMESE_YENI": "gremse",
        "GREMESE_ESKI": "gremse_eski",
        "GUMUSTRY": "gumus_gram",
        "XAGUSD": "gumus_ons",
        "GUMUSUSD": "gumus_usd",
        "XPTUSD": "platin_ons",
        "XPDUSD": "paladyum_ons",
        "PLATIN": "platin",
        "PALADYUM": "paladyum",
        "USDKG": "usdkg",
        "EURKG": "eurkg",
        "XAUXAG": "xauxag",
    }
)

# altin.in kur code -> instrument id
ALTININ_CODES: Mapping[str, str] = MappingProxyType(
    {
        "Y14": "14ayar",
        "Y22": "22ayar",
        "ALTIN": "gram",
        "KULCE": "has",
        "ONS": "ons",
        "CEYREK": "ceyrek",
        "YARIM": "yarim",
        "TAM": "tam",
        "ATA": "ata",
        "GUMUS": "gumus_gram",
    }
)

# Haremaltin codes with no Truncgil counterpart; fetched live to augment metals.
HAREMALTIN_ONLY_CODES: tuple[str, ...] = (
    "CEYREK_ESKI",
    "YARIM_ESKI",
    "TEK_ESKI",
    "ATA_ESKI",
    "ATA5_ESKI",
    "GREMESE_ESKI",
    "GUMUSUSD",
    "XAGUSD",
    "XPTUSD",
    "XPDUSD",
    "PLATIN",
    "PALADYUM",
    "USDKG",
    "EURKG",
    "XAUXAG",
)

# Upstream converts silver grams to ounces with the avoirdupois figure.
OUNCE_GRAMS = 28.3495
KARAT_14_RATIO = 14 / 24


class RatioDerivation(NamedTuple):
    """A derived instrument computed as ``base * ratio``."""

    base_id: str
    target_id: str
    ratio: float


class CrossRateDerivation(NamedTuple):
    """A derived pair computed as ``numerator / denominator``."""

    numerator_id: str
    denominator_id: str
    target_id: str


METAL_DERIVATIONS: tuple[RatioDerivation, ...] = (
    RatioDerivation("gram", "14ayar", KARAT_14_RATIO),
    RatioDerivation("gumus_gram", "gumus_ons", OUNCE_GRAMS),
)

FX_CROSS_RATES: tuple[CrossRateDerivation, ...] = (
    CrossRateDerivation("EURTRY", "USDTRY", "EURUSD"),
)


class BackfillTarget(NamedTuple):
    """An (archive code, instrument id) pair for historical backfill."""

    code: str
    instrument_id: str


HAREMALTIN_BACKFILL: tuple[BackfillTarget, ...] = (
    BackfillTarget("AYAR22", "22ayar"),
    BackfillTarget("ONS", "ons"),
    BackfillTarget("ALTIN", "has"),
    BackfillTarget("KULCEALTIN", "gram"),
    BackfillTarget("CEYREK_YENI", "ceyrek"),
    BackfillTarget("YARIM_YENI", "yarim"),
    BackfillTarget("TEK_YENI", "tam"),
    BackfillTarget("ATA_YENI", "ata"),
    BackfillTarget("ATA5_YENI", "ata5"),
    BackfillTarget("GREMESE_YENI", "gremse"),
    BackfillTarget("GUMUSTRY", "gumus_gram"),
    BackfillTarget("XAGUSD", "gumus_ons"),
    BackfillTarget("GUMUSUSD", "gumus_usd"),
    BackfillTarget("XPTUSD", "platin_ons"),
    BackfillTarget("XPDUSD", "paladyum_ons"),
    BackfillTarget("PLATIN", "platin"),
    BackfillTarget("PALADYUM", "paladyum"),
    BackfillTarget("USDKG", "usdkg"),
    BackfillTarget("EURKG", "eurkg"),
    BackfillTarget("XAUXAG", "xauxag"),
)

ALTININ_BACKFILL: tuple[BackfillTarget, ...] = (BackfillTarget("Y14", "14ayar"),)


def _metal(
    id: str, name: str, code: str, unit: str, sort_order: int, quote_currency: str = "TRY"
) -> Instrument:
    return Instrument(
        id=id,
        category=Category.METALS,
        name=name,
        code=code,
        unit=unit,
        sort_order=sort_order,
        quote_currency=quote_currency,
    )


def _fx(id: str, name: str, code: str, sort_order: int, quote_currency: str = "TRY") -> Instrument:
    return Instrument(
        id=id,
        category=Category.FX,
        name=name,
        code=code,
        sort_order=sort_order,
        quote_currency=quote_currency,
    )


SEED_INSTRUMENTS: tuple[Instrument, ...] = (
    _metal("gram", "Gram Altın", "XAU", "gram", 1),
    _metal("has", "Has Altın", "XAU", "gram", 2),
    _metal("ons", "Ons Altın", "XAU", "ounce", 3, "USD"),
    _metal("22ayar", "22 Ayar Bilezik", "XAU", "gram", 4),
    _metal("14ayar", "14 Ayar Altın", "XAU", "gram", 5),
    _metal("ceyrek", "Yeni Çeyrek", "XAU", "piece", 6),
    _metal("yarim", "Yeni Yarım", "XAU", "piece", 7),
    _metal("tam", "Yeni Tam", "XAU", "piece", 8),
    _metal("ata", "Yeni Ata", "XAU", "piece", 9),
    _metal("ata5", "Yeni Ata 5'li", "XAU", "piece", 10),
    _metal("gremse", "Yeni Gremse", "XAU", "piece", 11),
    _metal("ceyrek_eski", "Eski Çeyrek", "XAU", "piece", 12),
    _metal("yarim_eski", "Eski Yarım", "XAU", "piece", 13),
    _metal("tam_eski", "Eski Tam", "XAU", "piece", 14),
    _metal("ata_eski", "Eski Ata", "XAU", "piece", 15),
    _metal("ata5_eski", "Eski Ata 5'li", "XAU", "piece", 16),
    _metal("gremse_eski", "Eski Gremse", "XAU", "piece", 17),
    _metal("gumus_gram", "Gümüş (Gram)", "XAG", "gram", 18),
    _metal("gumus_ons", "Gümüş (Ons)", "XAG", "ounce", 19),
    _metal("gumus_usd", "Gümüş USD", "XAG", "gram", 20, "USD"),
    _metal("platin_gram", "Platin (Gram)", "XPT", "gram", 21),
    _metal("platin_ons", "Platin (Ons)", "XPT", "ounce", 22, "USD"),
    _metal("platin", "Platin TL", "XPT", "gram", 23),
    _metal("paladyum_gram", "Paladyum (Gram)", "XPD", "gram", 24),
    _metal("paladyum_ons", "Paladyum (Ons)", "XPD", "ounce", 25, "USD"),
    _metal("paladyum", "Paladyum TL", "XPD", "gram", 26),
    _metal("usdkg", "USD/KG Altın", "XAU", "kg", 27, "USD"),
    _metal("eurkg", "EUR/KG Altın", "XAU", "kg", 28, "EUR"),
    _metal("xauxag", "Altın/Gümüş Oranı", "XAUXAG", "ratio", 29, ""),
    _fx("USDTRY", "USD/TRY", "USD", 1),
    _fx("EURTRY", "EUR/TRY", "EUR", 2),
    _fx("EURUSD", "EUR/USD", "EUR", 3, "USD"),
    _fx("GBPTRY", "GBP/TRY", "GBP", 4),
    _fx("CHFTRY", "CHF/TRY", "CHF", 5),
    _fx("AUDTRY", "AUD/TRY", "AUD", 6),
    _fx("CADTRY", "CAD/TRY", "CAD", 7),
    _fx("SARTRY", "SAR/TRY", "SAR", 8),
    _fx("JPYTRY", "JPY/TRY", "JPY", 9),
)
