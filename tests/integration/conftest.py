"""Integration test fixtures: real SQLite files, no network."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from valora.core.config import ValoraConfig
from valora.core.models import FetchStatus, NormalizedQuote
from valora.storage.store import SqliteStore

HOUR = 3_600


@pytest.fixture
def integration_config(tmp_path: Path) -> ValoraConfig:
    """Config pointing at a fresh database file under tmp_path."""
    return ValoraConfig.model_validate(
        {
            "storage": {"sqlite_path": str(tmp_path / "integration.db")},
            "backfill": {"enabled": False},
        }
    )


async def _seed(config: ValoraConfig, now: int) -> None:
    store = SqliteStore(config.storage)
    await store.initialize()
    try:
        history = [
            NormalizedQuote(instrument_id="gram", ts=now - 30 * HOUR, price=4000.0,
                            buy=3995.0, sell=4005.0, source="truncgil"),
            NormalizedQuote(instrument_id="gram", ts=now - 2 * HOUR, price=4300.0,
                            buy=4295.0, sell=4305.0, source="truncgil"),
            NormalizedQuote(instrument_id="gram", ts=now - 2 * HOUR + 60, price=4301.0,
                            buy=4296.0, sell=4306.0, source="truncgil"),
            NormalizedQuote(instrument_id="14ayar", ts=now - 3 * HOUR, price=2500.0,
                            sell=2500.0, source="altin_in"),
        ]
        await store.append_historical(history)
        latest = [
            NormalizedQuote(instrument_id="gram", ts=now, price=4400.0,
                            buy=4395.0, sell=4405.0, source="truncgil"),
            NormalizedQuote(instrument_id="ons", ts=now, price=3350.0,
                            buy=3349.0, sell=3351.0, source="truncgil"),
            NormalizedQuote(instrument_id="USDTRY", ts=now - 60, price=39.2,
                            buy=39.15, sell=39.25, source="tcmb"),
        ]
        await store.append_historical(latest)
        await store.upsert_latest(latest)
        await store.record_fetch_attempt("metals", FetchStatus.SUCCESS)
        await store.record_fetch_attempt("fx", FetchStatus.ERROR, "TCMB timed out")
    finally:
        await store.close()


@pytest.fixture
def seeded_config(integration_config: ValoraConfig) -> ValoraConfig:
    """Config whose database already holds snapshots, history and fetch state."""
    asyncio.run(_seed(integration_config, int(time.time())))
    return integration_config
