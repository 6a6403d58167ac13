"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from valora.api.deps import AppState
from valora.api.routes import router
from valora.core.config import ValoraConfig, load_config
from valora.core.exceptions import ConfigError, SourceError, StorageError, ValoraError
from valora.quotes.cache import TTLCache, run_periodic_cleanup
from valora.refresh.runtime import build_runtime
from valora.storage.store import create_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle.

    With the scheduler enabled the app owns a full Runtime: it runs the
    initial fetch and backfill in the background and keeps both periodic
    triggers alive until shutdown. Otherwise it only opens the store.
    Either way expired cache entries are evicted on a timer.
    """
    config = app.state._pending_config or load_config()
    cache = TTLCache(default_ttl=config.api.latest_ttl_seconds)
    startup_task: asyncio.Task | None = None

    if app.state._with_scheduler:
        runtime = await build_runtime(config)
        app.state.app_state = AppState(
            config=config, store=runtime.store, cache=cache, runtime=runtime
        )
        startup_task = asyncio.create_task(runtime.startup())
        runtime.scheduler.start()
    else:
        store = await create_store(config.storage)
        app.state.app_state = AppState(config=config, store=store, cache=cache)

    cleanup_task = asyncio.create_task(
        run_periodic_cleanup(cache, config.api.cache_cleanup_seconds), name="cache-cleanup"
    )
    yield

    state: AppState = app.state.app_state
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    if startup_task is not None and not startup_task.done():
        startup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await startup_task
    if state.runtime is not None:
        await state.runtime.close()
    else:
        await state.store.close()


def create_app(config: ValoraConfig | None = None, *, with_scheduler: bool = False) -> FastAPI:
    """Create and configure the FastAPI application."""
    import valora

    app = FastAPI(
        title="Valora API",
        description="Precious metal and exchange rate quotes",
        version=valora.__version__,
        lifespan=lifespan,
    )

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config
    app.state._with_scheduler = with_scheduler

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(ValoraError)
    async def valora_exception_handler(request: Request, exc: ValoraError):
        status_map = {
            ConfigError: 400,
            StorageError: 500,
        }
        status = 502 if isinstance(exc, SourceError) else status_map.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
