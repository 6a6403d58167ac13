"""Wires sources, store, orchestrator and backfill together from config."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from valora.core.config import ValoraConfig
from valora.core.models import BackfillSummary, RefreshResult
from valora.refresh.backfill import BackfillController
from valora.refresh.orchestrator import RefreshOrchestrator
from valora.refresh.scheduler import RefreshScheduler
from valora.sources.altinin import AltinInSource
from valora.sources.exchangerate import ExchangeRateSource
from valora.sources.haremaltin import HaremAltinSource
from valora.sources.tcmb import TcmbSource
from valora.sources.truncgil import TruncgilSource
from valora.storage.store import SqliteStore, create_store

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a long-running process needs. Close it when done."""

    config: ValoraConfig
    store: SqliteStore
    orchestrator: RefreshOrchestrator
    backfill: BackfillController
    scheduler: RefreshScheduler
    sources: list = field(default_factory=list)

    async def close(self) -> None:
        await self.scheduler.stop()
        for source in self.sources:
            await source.close()
        await self.store.close()

    async def __aenter__(self) -> Runtime:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def startup(self, *, backfill: bool | None = None) -> list[RefreshResult]:
        """Initial fetch of both categories, then backfill if enabled."""
        results = await self.orchestrator.refresh_all()
        if backfill if backfill is not None else self.config.backfill.enabled:
            summary = await self.run_backfill()
            logger.info("Startup backfill: %d quotes inserted", summary.inserted)
        return results

    async def run_backfill(self, **kwargs) -> BackfillSummary:
        return await self.backfill.run(**kwargs)


async def build_runtime(config: ValoraConfig) -> Runtime:
    """Create and initialize the store, construct every adapter, wire the services."""
    store = await create_store(
        config.storage,
        alert_threshold=config.refresh.failure_alert_threshold,
        batch_size=config.backfill.batch_size,
    )

    truncgil = TruncgilSource(config.sources)
    tcmb = TcmbSource(config.sources)
    exchangerate = ExchangeRateSource(config.sources)
    haremaltin = HaremAltinSource.from_config(config.sources)
    altinin = AltinInSource(config.sources)

    orchestrator = RefreshOrchestrator(
        store,
        metals_source=truncgil,
        fx_primary=tcmb,
        fx_fallback=exchangerate,
        metals_augment=haremaltin,
        config=config.refresh,
    )
    backfill = BackfillController(
        store,
        archive=haremaltin,
        secondary_archive=altinin,
        fx_history=tcmb,
        config=config.backfill,
    )
    return Runtime(
        config=config,
        store=store,
        orchestrator=orchestrator,
        backfill=backfill,
        scheduler=RefreshScheduler(orchestrator, config.refresh),
        sources=[truncgil, tcmb, exchangerate, haremaltin, altinin],
    )
