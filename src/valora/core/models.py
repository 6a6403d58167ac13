"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

import math
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Type Aliases ---

InstrumentId = str
SourceTag = str
UnixTs = int

# --- Enumerations ---


class Category(StrEnum):
    """Refresh categories. Also the instrument grouping."""

    METALS = "metals"
    FX = "fx"


class FetchStatus(StrEnum):
    """Status values recorded in the fetch-state ledger."""

    SUCCESS = "success"
    ERROR = "error"
    IN_PROGRESS = "in_progress"


class ArchiveTransport(StrEnum):
    """HTTP stacks available to the Cloudflare-protected archive adapter."""

    CURL = "curl"
    HTTPX = "httpx"


# --- Reference Data ---


class Instrument(BaseModel):
    """A priced series: a metal product or a currency pair."""

    model_config = ConfigDict(frozen=True)

    id: InstrumentId
    category: Category
    name: str
    code: str
    quote_currency: str = "TRY"
    unit: str | None = None
    sort_order: int = 0
    is_active: bool = True


# --- Quotes ---


class NormalizedQuote(BaseModel):
    """One price observation, as produced by a source adapter.

    Transient: built by an adapter, consumed by the orchestrator, then turned
    into historical/snapshot rows or dropped.
    """

    model_config = ConfigDict(frozen=True)

    instrument_id: InstrumentId
    ts: UnixTs
    price: float
    buy: float | None = None
    sell: float | None = None
    source: SourceTag
    raw_data: Any | None = None

    @field_validator("price")
    @classmethod
    def price_is_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"price must be a finite number, got {v!r}")
        return v

    @field_validator("buy", "sell")
    @classmethod
    def side_is_finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError(f"buy/sell must be finite when present, got {v!r}")
        return v


class LatestSnapshot(BaseModel):
    """The single most recent quote per instrument, overwritten in place."""

    model_config = ConfigDict(frozen=True)

    instrument_id: InstrumentId
    ts: UnixTs
    price: float
    price_24h_ago: float | None = None
    ts_24h_ago: UnixTs | None = None
    buy: float | None = None
    sell: float | None = None
    source: SourceTag
    raw_data: Any | None = None
    updated_at: datetime | None = None


class FetchState(BaseModel):
    """Refresh ledger row for one category."""

    model_config = ConfigDict(frozen=True)

    key: str
    last_success_ts: UnixTs | None = None
    last_attempt_ts: UnixTs | None = None
    last_status: FetchStatus | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    updated_at: datetime | None = None


# --- Read Path ---


class HistoryPoint(BaseModel):
    """One point of a historical series as served to clients."""

    model_config = ConfigDict(frozen=True)

    ts: UnixTs
    price: float
    buy: float | None = None
    sell: float | None = None
    source: SourceTag | None = None


class LatestItem(BaseModel):
    """A snapshot row joined with its instrument's display data."""

    model_config = ConfigDict(frozen=True)

    instrument_id: InstrumentId
    ts: UnixTs
    price: float
    price_24h_ago: float | None = None
    ts_24h_ago: UnixTs | None = None
    buy: float | None = None
    sell: float | None = None
    source: SourceTag
    name: str | None = None
    code: str | None = None


class LatestView(BaseModel):
    """Everything the route layer needs for a category's latest prices."""

    model_config = ConfigDict(frozen=True)

    category: Category
    items: list[LatestItem] = Field(default_factory=list)
    last_updated_ts: UnixTs | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items


# --- Operation Results ---


class RefreshResult(BaseModel):
    """Outcome of one category refresh attempt."""

    model_config = ConfigDict(frozen=True)

    category: Category
    success: bool
    quotes_count: int = 0
    skipped: bool = False
    used_fallback: bool = False
    error: str | None = None


class BackfillSummary(BaseModel):
    """Tally of one backfill run."""

    model_config = ConfigDict(frozen=True)

    inserted: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    empty: int = 0

    @property
    def total(self) -> int:
        return self.skipped + self.succeeded + self.failed + self.empty

    def merge(self, other: BackfillSummary) -> BackfillSummary:
        return BackfillSummary(
            inserted=self.inserted + other.inserted,
            skipped=self.skipped + other.skipped,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            empty=self.empty + other.empty,
        )
