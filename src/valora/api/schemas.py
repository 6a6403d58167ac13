"""API-specific response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class FetchStateResponse(BaseModel):
    last_success_ts: int | None = None
    last_attempt_ts: int | None = None
    last_status: str | None = None
    last_error: str | None = None
    consecutive_failures: int = 0


class HealthResponse(BaseModel):
    """Liveness plus per-category refresh state."""

    status: str
    version: str
    database: bool
    total_quotes: int
    fetch_state: dict[str, FetchStateResponse]


# -- Latest --


class LatestItemResponse(BaseModel):
    instrument_id: str
    name: str | None = None
    code: str | None = None
    ts: int
    price: float
    buy: float | None = None
    sell: float | None = None
    source: str
    price_24h_ago: float | None = None
    change_24h_percent: float | None = None


class LatestResponse(BaseModel):
    """Current prices of one category."""

    category: str
    last_updated_ts: int | None
    items: list[LatestItemResponse]


# -- History --


class HistoryPointResponse(BaseModel):
    ts: int
    price: float
    buy: float | None = None
    sell: float | None = None


class HistoryResponse(BaseModel):
    """Bucketed historical series for one instrument, newest first."""

    instrument_id: str
    category: str
    points: list[HistoryPointResponse]


# -- Instruments --


class InstrumentResponse(BaseModel):
    id: str
    category: str
    name: str
    code: str
    quote_currency: str
    unit: str | None = None
    sort_order: int


class InstrumentListResponse(BaseModel):
    items: list[InstrumentResponse]
