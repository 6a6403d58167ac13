"""Shared pytest fixtures for valora."""

from __future__ import annotations

import pytest

from valora.core.config import StorageConfig
from valora.core.models import NormalizedQuote
from valora.storage.store import SqliteStore

# 2025-06-04 12:00:00 UTC, a Wednesday
NOW = 1_749_038_400


class FakeClock:
    """Manually advanced wall clock, shared by store, orchestrator and sources."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(clock):
    """An initialized in-memory SqliteStore on the fake clock."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"), alert_threshold=3, clock=clock)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_quote(clock):
    """Factory for NormalizedQuote with overridable defaults."""

    def _make(**overrides) -> NormalizedQuote:
        defaults = dict(
            instrument_id="gram",
            ts=int(clock()),
            price=2552.5,
            buy=2550.0,
            sell=2555.0,
            source="truncgil",
        )
        defaults.update(overrides)
        return NormalizedQuote(**defaults)

    return _make
