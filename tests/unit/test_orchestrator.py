"""Tests for refresh orchestration, fallback, cooldown and staleness."""

from __future__ import annotations

import httpx
import pytest
import respx

from valora.core.config import RefreshConfig, SourcesConfig
from valora.core.exceptions import NoDataAvailable, StorageError, TransportError
from valora.core.models import Category, FetchStatus, NormalizedQuote
from valora.refresh.orchestrator import RefreshOrchestrator
from valora.sources.truncgil import TRUNCGIL_URL, TruncgilSource


class FakeSource:
    """A CurrentSource that returns canned quotes or raises."""

    def __init__(self, source: str, result: list[NormalizedQuote] | Exception, **extra) -> None:
        self.source = source
        self.result = result
        self.calls = 0
        for name, value in extra.items():
            setattr(self, name, value)

    async def fetch_current(self) -> list[NormalizedQuote]:
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def refresh_config() -> RefreshConfig:
    return RefreshConfig(cooldown_seconds=10, stale_after_seconds=900)


@pytest.fixture
def metals_quotes(make_quote):
    return [
        make_quote(instrument_id="gram", price=4000.0),
        make_quote(instrument_id="ons", price=3300.0),
    ]


@pytest.fixture
def fx_quotes(make_quote):
    return [make_quote(instrument_id="USDTRY", price=39.0, source="tcmb")]


@pytest.fixture
def make_orchestrator(store, clock, refresh_config, metals_quotes, fx_quotes):
    def _make(**overrides) -> RefreshOrchestrator:
        kwargs = dict(
            metals_source=FakeSource("truncgil", metals_quotes),
            fx_primary=FakeSource("tcmb", fx_quotes),
            fx_fallback=None,
            metals_augment=None,
            config=refresh_config,
            clock=clock,
        )
        kwargs.update(overrides)
        return RefreshOrchestrator(store, **kwargs)

    return _make


class TestMetals:
    async def test_success_persists_everything(self, store, make_orchestrator):
        orch = make_orchestrator()
        result = await orch.refresh(Category.METALS)

        assert result.success
        assert result.quotes_count == 2
        assert not result.used_fallback
        assert await store.count_quotes() == 2
        view = await store.get_latest(Category.METALS)
        assert {i.instrument_id for i in view.items} == {"gram", "ons"}
        state = await store.get_fetch_state("metals")
        assert state.last_status == FetchStatus.SUCCESS
        assert state.consecutive_failures == 0

    async def test_empty_primary_is_failure(self, store, make_orchestrator):
        orch = make_orchestrator(metals_source=FakeSource("truncgil", []))
        result = await orch.refresh_metals()

        assert not result.success
        assert "No metals data" in result.error
        state = await store.get_fetch_state("metals")
        assert state.last_status == FetchStatus.ERROR
        assert state.consecutive_failures == 1
        assert await store.count_quotes() == 0

    async def test_source_error_is_recorded_not_raised(self, store, make_orchestrator):
        orch = make_orchestrator(metals_source=FakeSource("truncgil", TransportError("timeout")))
        result = await orch.refresh_metals()
        assert not result.success
        assert (await store.get_fetch_state("metals")).last_error == "timeout"

    async def test_augment_adds_only_uncovered(self, store, make_orchestrator, make_quote):
        augment = FakeSource(
            "haremaltin",
            [
                make_quote(instrument_id="gram", price=1.0, source="haremaltin"),
                make_quote(instrument_id="platin", price=1200.0, source="haremaltin"),
            ],
            configured=True,
        )
        orch = make_orchestrator(metals_augment=augment)
        result = await orch.refresh_metals()

        assert result.quotes_count == 3
        assert (await store.get_snapshot("gram")).price == 4000.0
        assert (await store.get_snapshot("platin")).source == "haremaltin"

    async def test_augment_failure_is_tolerated(self, make_orchestrator):
        augment = FakeSource("haremaltin", TransportError("curl exited"), configured=True)
        result = await make_orchestrator(metals_augment=augment).refresh_metals()
        assert result.success
        assert result.quotes_count == 2

    async def test_unconfigured_augment_not_called(self, make_orchestrator):
        augment = FakeSource("haremaltin", [], configured=False)
        await make_orchestrator(metals_augment=augment).refresh_metals()
        assert augment.calls == 0

    async def test_augment_disabled_by_config(self, make_orchestrator):
        augment = FakeSource("haremaltin", [], configured=True)
        orch = make_orchestrator(
            metals_augment=augment, config=RefreshConfig(augment_metals=False)
        )
        await orch.refresh_metals()
        assert augment.calls == 0


class TestFxFallback:
    async def test_primary_success_skips_fallback(self, make_orchestrator, make_quote):
        fallback = FakeSource("exchangerate_host", [make_quote(instrument_id="USDTRY")])
        orch = make_orchestrator(fx_fallback=fallback)
        result = await orch.refresh_fx()
        assert result.success
        assert not result.used_fallback
        assert fallback.calls == 0

    @pytest.mark.parametrize(
        "primary_result",
        [NoDataAvailable("weekend"), TransportError("down"), []],
        ids=["no-data", "transport", "empty"],
    )
    async def test_fallback_used(self, store, make_orchestrator, make_quote, primary_result):
        fallback = FakeSource(
            "exchangerate_host",
            [make_quote(instrument_id="USDTRY", price=39.5, buy=None, sell=None, source="exchangerate_host")],
        )
        orch = make_orchestrator(
            fx_primary=FakeSource("tcmb", primary_result), fx_fallback=fallback
        )
        result = await orch.refresh_fx()

        assert result.success
        assert result.used_fallback
        assert fallback.calls == 1
        snap = await store.get_snapshot("USDTRY")
        assert snap.source == "exchangerate_host"
        state = await store.get_fetch_state("fx")
        assert state.last_status == FetchStatus.SUCCESS
        assert state.consecutive_failures == 0

    async def test_both_fail(self, store, make_orchestrator):
        orch = make_orchestrator(
            fx_primary=FakeSource("tcmb", TransportError("down")),
            fx_fallback=FakeSource("exchangerate_host", TransportError("also down")),
        )
        result = await orch.refresh_fx()
        assert not result.success
        assert "All forex sources failed" in result.error
        assert (await store.get_fetch_state("fx")).consecutive_failures == 1

    async def test_fallback_empty(self, make_orchestrator):
        orch = make_orchestrator(
            fx_primary=FakeSource("tcmb", []),
            fx_fallback=FakeSource("exchangerate_host", []),
        )
        result = await orch.refresh_fx()
        assert not result.success
        assert "All forex sources failed" in result.error

    async def test_no_fallback_configured(self, make_orchestrator):
        orch = make_orchestrator(fx_primary=FakeSource("tcmb", TransportError("down")))
        result = await orch.refresh_fx()
        assert not result.success
        assert result.error == "down"


class TestCooldown:
    async def test_second_call_within_cooldown_skipped(self, make_orchestrator, metals_quotes):
        source = FakeSource("truncgil", metals_quotes)
        orch = make_orchestrator(metals_source=source)

        first = await orch.refresh_metals()
        second = await orch.refresh_metals()

        assert first.success
        assert second.skipped
        assert not second.success
        assert source.calls == 1

    async def test_after_cooldown(self, make_orchestrator, metals_quotes, clock):
        source = FakeSource("truncgil", metals_quotes)
        orch = make_orchestrator(metals_source=source)

        await orch.refresh_metals()
        clock.advance(10)
        result = await orch.refresh_metals()

        assert result.success
        assert source.calls == 2

    async def test_failed_attempt_also_starts_cooldown(self, make_orchestrator):
        source = FakeSource("truncgil", TransportError("down"))
        orch = make_orchestrator(metals_source=source)
        await orch.refresh_metals()
        await orch.refresh_metals()
        assert source.calls == 1

    async def test_categories_independent(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.refresh_metals()
        assert await orch.can_refresh(Category.FX)
        assert not await orch.can_refresh(Category.METALS)

    async def test_refresh_all(self, make_orchestrator):
        results = await make_orchestrator().refresh_all()
        assert [r.category for r in results] == [Category.METALS, Category.FX]
        assert all(r.success for r in results)


class TestStaleness:
    async def test_never_refreshed_is_stale(self, make_orchestrator):
        assert await make_orchestrator().is_stale(Category.METALS)

    async def test_fresh_skips_without_calling_source(self, make_orchestrator, metals_quotes, clock):
        source = FakeSource("truncgil", metals_quotes)
        orch = make_orchestrator(metals_source=source)
        await orch.refresh_metals()

        clock.advance(600)
        assert await orch.refresh_if_stale(Category.METALS) is None
        assert source.calls == 1

        clock.advance(300)
        result = await orch.refresh_if_stale(Category.METALS)
        assert result.success
        assert source.calls == 2

    async def test_failure_does_not_refresh_success_time(self, make_orchestrator, clock):
        orch = make_orchestrator(metals_source=FakeSource("truncgil", TransportError("x")))
        await orch.refresh_metals()
        assert await orch.is_stale(Category.METALS)


class FailingStore:
    """Wraps a store and fails every historical write."""

    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def append_historical(self, quotes):
        raise StorageError("disk full", context={"operation": "insert", "table": "quotes"})


class TestStorageFailure:
    async def test_storage_error_recorded(self, store, clock, metals_quotes, fx_quotes):
        orch = RefreshOrchestrator(
            FailingStore(store),
            metals_source=FakeSource("truncgil", metals_quotes),
            fx_primary=FakeSource("tcmb", fx_quotes),
            clock=clock,
        )
        result = await orch.refresh_metals()
        assert not result.success
        state = await store.get_fetch_state("metals")
        assert state.last_status == FetchStatus.ERROR
        assert state.last_error == "disk full"


class TestEndToEnd:
    @respx.mock
    async def test_truncgil_to_snapshot(self, store, clock):
        respx.get(TRUNCGIL_URL).mock(
            return_value=httpx.Response(
                200, json={"gram-altin": {"Alış": "2.550,00", "Satış": "2.555,00"}}
            )
        )
        async with TruncgilSource(SourcesConfig(rate_limit=100), clock=clock) as truncgil:
            orch = RefreshOrchestrator(
                store,
                metals_source=truncgil,
                fx_primary=FakeSource("tcmb", []),
                clock=clock,
            )
            result = await orch.refresh_metals()

        assert result.success
        gram = await store.get_snapshot("gram")
        assert gram.price == pytest.approx(2552.5)
        assert gram.buy == 2550.0
        assert gram.sell == 2555.0
        assert gram.price_24h_ago is None
        assert gram.ts == int(clock())

        fourteen = await store.get_snapshot("14ayar")
        assert fourteen.source == "truncgil_calculated"
        assert fourteen.price == pytest.approx(2552.5 * 14 / 24)
        assert await store.count_quotes("14ayar") == 1
