"""FastAPI route definitions for the valora API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

import valora
from valora.api.deps import AppState, get_app_state, get_cache, get_store
from valora.api.schemas import (
    FetchStateResponse,
    HealthResponse,
    HistoryPointResponse,
    HistoryResponse,
    InstrumentListResponse,
    InstrumentResponse,
    LatestItemResponse,
    LatestResponse,
)
from valora.core.models import Category
from valora.quotes.cache import TTLCache
from valora.quotes.history import change_percent, shape_history
from valora.storage.store import SqliteStore

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(store: SqliteStore = Depends(get_store)):
    """Database liveness and the refresh ledger of each category."""
    healthy = await store.health_check()
    states: dict[str, FetchStateResponse] = {}
    total = 0
    if healthy:
        total = await store.count_quotes()
        for category in Category:
            state = await store.get_fetch_state(str(category))
            if state is not None:
                states[str(category)] = FetchStateResponse(
                    last_success_ts=state.last_success_ts,
                    last_attempt_ts=state.last_attempt_ts,
                    last_status=str(state.last_status) if state.last_status else None,
                    last_error=state.last_error,
                    consecutive_failures=state.consecutive_failures,
                )
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=valora.__version__,
        database=healthy,
        total_quotes=total,
        fetch_state=states,
    )


# -- Latest --


async def _latest(category: Category, state: AppState) -> LatestResponse:
    cache_key = f"latest:{category}"
    cached = state.cache.get(cache_key)
    if cached is not None:
        return cached

    view = await state.store.get_latest(category)
    if view.is_empty:
        raise HTTPException(
            status_code=503,
            detail=f"No {category} data yet, the first refresh has not completed",
        )

    response = LatestResponse(
        category=str(category),
        last_updated_ts=view.last_updated_ts,
        items=[
            LatestItemResponse(
                instrument_id=i.instrument_id,
                name=i.name,
                code=i.code,
                ts=i.ts,
                price=i.price,
                buy=i.buy,
                sell=i.sell,
                source=i.source,
                price_24h_ago=i.price_24h_ago,
                change_24h_percent=change_percent(i.price, i.price_24h_ago),
            )
            for i in view.items
        ],
    )
    state.cache.set(cache_key, response, ttl=state.config.api.latest_ttl_seconds)
    return response


@router.get("/metals/latest", response_model=LatestResponse)
async def metals_latest(state: AppState = Depends(get_app_state)):
    """Latest metal prices."""
    return await _latest(Category.METALS, state)


@router.get("/fx/latest", response_model=LatestResponse)
async def fx_latest(state: AppState = Depends(get_app_state)):
    """Latest exchange rates."""
    return await _latest(Category.FX, state)


# -- History --


@router.get("/history", response_model=HistoryResponse)
async def history(
    instrument_id: str = Query(..., min_length=1),
    start: int | None = Query(None, alias="from", description="Unix seconds"),
    end: int | None = Query(None, alias="to", description="Unix seconds"),
    limit: int = Query(1000),
    state: AppState = Depends(get_app_state),
):
    """Historical series for one instrument, one point per time bucket."""
    limit = min(max(1, limit), state.config.api.history_max_limit)
    cache_key = f"history:{instrument_id}:{start}:{end}:{limit}"
    cached = state.cache.get(cache_key)
    if cached is not None:
        return cached

    instrument = await state.store.get_instrument(instrument_id)
    if instrument is None:
        raise HTTPException(status_code=404, detail=f"Instrument {instrument_id} not found")

    points = await state.store.get_history(instrument_id, start=start, end=end, limit=limit)
    if not points:
        raise HTTPException(
            status_code=404, detail="No historical data found for the specified range"
        )

    shaped = shape_history(points, start=start, end=end, now=int(state.clock()))
    response = HistoryResponse(
        instrument_id=instrument_id,
        category=str(instrument.category),
        points=[
            HistoryPointResponse(ts=p.ts, price=p.price, buy=p.buy, sell=p.sell) for p in shaped
        ],
    )
    state.cache.set(cache_key, response, ttl=state.config.api.history_ttl_seconds)
    logger.info("Served history %s: %d points", instrument_id, len(response.points))
    return response


# -- Instruments --


@router.get("/instruments", response_model=InstrumentListResponse)
async def list_instruments(
    category: Category | None = Query(None),
    store: SqliteStore = Depends(get_store),
    cache: TTLCache = Depends(get_cache),
):
    """Active instruments, optionally filtered by category."""
    cache_key = f"instruments:{category}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    instruments = await store.list_instruments(category)
    response = InstrumentListResponse(
        items=[
            InstrumentResponse(
                id=i.id,
                category=str(i.category),
                name=i.name,
                code=i.code,
                quote_currency=i.quote_currency,
                unit=i.unit,
                sort_order=i.sort_order,
            )
            for i in instruments
        ]
    )
    cache.set(cache_key, response)
    return response
