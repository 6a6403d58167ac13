"""Tests for the HTTP source adapters (respx-mocked)."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
import respx

from valora.core.config import SourcesConfig
from valora.core.exceptions import (
    NoDataAvailable,
    ParsingError,
    RateLimitError,
    TransportError,
)
from valora.sources.altinin import ALTININ_URL, AltinInSource
from valora.sources.base import _parse_retry_after
from valora.sources.exchangerate import EXCHANGERATE_URL, ExchangeRateSource
from valora.sources.tcmb import TCMB_BASE_URL, TcmbSource, day_timestamp, historical_url
from valora.sources.truncgil import TRUNCGIL_URL, TruncgilSource

NOW = 1_749_038_400  # clock fixture start

UTC = timezone.utc


# --- Fixtures ---


@pytest.fixture
def sources_config() -> SourcesConfig:
    return SourcesConfig(user_agent="ValoraTest/1.0", rate_limit=100, tcmb_history_delay=0)


@pytest.fixture
async def truncgil(sources_config, clock):
    async with TruncgilSource(sources_config, clock=clock) as s:
        yield s


@pytest.fixture
async def tcmb(sources_config, clock):
    async with TcmbSource(sources_config, clock=clock) as s:
        yield s


@pytest.fixture
async def exchangerate(sources_config, clock):
    async with ExchangeRateSource(sources_config, clock=clock) as s:
        yield s


@pytest.fixture
async def altinin(sources_config, clock):
    async with AltinInSource(sources_config, clock=clock) as s:
        yield s


@pytest.fixture
def truncgil_payload() -> dict:
    return {
        "Update_Date": "2025-06-04 15:00:02",
        "gram-altin": {"Alış": "4.180,25", "Satış": "4.181,10", "Tür": "Altın"},
        "ons": {"Alış": "$3.352,40", "Satış": "$3.353,10", "Tür": "Altın"},
        "ceyrek-altin": {"Alış": "6.942,61", "Satış": "7.081,46", "Tür": "Altın"},
        "gumus": {"Alış": "42,75", "Satış": "42,85", "Tür": "Altın"},
        "USD": {"Alış": "39,1540", "Satış": "39,2246", "Tür": "Döviz"},
    }


TCMB_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Tarih_Date Tarih="04.06.2025" Date="06/04/2025" Bulten_No="2025/104">
  <Currency CrossOrder="0" Kod="USD" CurrencyCode="USD">
    <Unit>1</Unit>
    <Isim>ABD DOLARI</Isim>
    <ForexBuying>39.1540</ForexBuying>
    <ForexSelling>39.2246</ForexSelling>
  </Currency>
  <Currency CrossOrder="9" Kod="EUR" CurrencyCode="EUR">
    <Unit>1</Unit>
    <Isim>EURO</Isim>
    <ForexBuying>44.6370</ForexBuying>
    <ForexSelling>44.7174</ForexSelling>
  </Currency>
  <Currency CrossOrder="4" Kod="JPY" CurrencyCode="JPY">
    <Unit>100</Unit>
    <Isim>JAPON YENI</Isim>
    <ForexBuying>27.1234</ForexBuying>
    <ForexSelling></ForexSelling>
  </Currency>
  <Currency CrossOrder="8" Kod="XDR" CurrencyCode="XDR">
    <Unit>1</Unit>
    <ForexBuying></ForexBuying>
    <ForexSelling></ForexSelling>
  </Currency>
</Tarih_Date>
"""


# --- Shared retry policy ---


class TestRateLimitedRequest:
    @respx.mock
    async def test_404_is_no_data(self, truncgil):
        respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))
        with pytest.raises(NoDataAvailable):
            await truncgil._rate_limited_request("GET", "https://example.com/missing")

    @respx.mock
    async def test_retries_on_429(self, truncgil):
        route = respx.get("https://example.com/rate").mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "0"}),
                httpx.Response(200, text="ok"),
            ]
        )
        response = await truncgil._rate_limited_request("GET", "https://example.com/rate")
        assert response.status_code == 200
        assert route.call_count == 2

    @respx.mock
    async def test_rate_limit_after_retries(self, truncgil):
        route = respx.get("https://example.com/rate").mock(
            return_value=httpx.Response(429, headers={"Retry-After": "0"})
        )
        with pytest.raises(RateLimitError, match="Rate limit exceeded"):
            await truncgil._rate_limited_request("GET", "https://example.com/rate")
        assert route.call_count == 4

    @respx.mock
    async def test_retries_on_server_error(self, truncgil):
        route = respx.get("https://example.com/server").mock(
            side_effect=[httpx.Response(503), httpx.Response(200, text="ok")]
        )
        response = await truncgil._rate_limited_request("GET", "https://example.com/server")
        assert response.status_code == 200
        assert route.call_count == 2

    @respx.mock
    async def test_other_status_is_transport_error(self, truncgil):
        respx.get("https://example.com/forbidden").mock(return_value=httpx.Response(403))
        with pytest.raises(TransportError, match="HTTP 403") as exc_info:
            await truncgil._rate_limited_request("GET", "https://example.com/forbidden")
        assert exc_info.value.context["status_code"] == 403
        assert exc_info.value.context["source"] == "truncgil"

    @respx.mock
    async def test_timeout_is_transport_error(self, truncgil):
        respx.get("https://example.com/slow").mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(TransportError, match="timed out"):
            await truncgil._rate_limited_request("GET", "https://example.com/slow")

    @respx.mock
    async def test_connection_error_retried(self, truncgil, monkeypatch):
        monkeypatch.setattr("valora.sources.base._CONNECTION_RETRY_DELAY", 0)
        route = respx.get("https://example.com/down").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(TransportError, match="Connection failed"):
            await truncgil._rate_limited_request("GET", "https://example.com/down")
        assert route.call_count == 3

    @respx.mock
    async def test_user_agent_sent(self, truncgil):
        route = respx.get("https://example.com/ua").mock(return_value=httpx.Response(200))
        await truncgil._rate_limited_request("GET", "https://example.com/ua")
        assert route.calls.last.request.headers["User-Agent"] == "ValoraTest/1.0"

    @pytest.mark.parametrize("raw, expected", [(None, 5), ("7", 7), ("soon", 5), ("-3", 0)])
    def test_parse_retry_after(self, raw, expected):
        assert _parse_retry_after(raw) == expected

    async def test_closed_after_context(self, sources_config):
        async with TruncgilSource(sources_config) as source:
            pass
        assert source._client.is_closed


# --- Truncgil ---


class TestTruncgil:
    @respx.mock
    async def test_fetch_current(self, truncgil, truncgil_payload):
        respx.get(TRUNCGIL_URL).mock(return_value=httpx.Response(200, json=truncgil_payload))

        quotes = await truncgil.fetch_current()
        by_id = {q.instrument_id: q for q in quotes}

        assert by_id["gram"].buy == pytest.approx(4180.25)
        assert by_id["gram"].sell == pytest.approx(4181.10)
        assert by_id["gram"].price == pytest.approx((4180.25 + 4181.10) / 2)
        assert by_id["gram"].ts == NOW
        assert by_id["gram"].source == "truncgil"
        assert by_id["ons"].buy == pytest.approx(3352.40)
        assert by_id["ceyrek"].buy == pytest.approx(6942.61)
        assert "USDTRY" not in by_id

    @respx.mock
    async def test_derived_instruments(self, truncgil, truncgil_payload):
        respx.get(TRUNCGIL_URL).mock(return_value=httpx.Response(200, json=truncgil_payload))

        by_id = {q.instrument_id: q for q in await truncgil.fetch_current()}
        assert by_id["14ayar"].source == "truncgil_calculated"
        assert by_id["14ayar"].price == pytest.approx(by_id["gram"].price * 14 / 24)
        assert by_id["gumus_ons"].source == "truncgil_calculated"

    def test_measured_instrument_beats_derived(self, truncgil):
        payload = {
            "gram-altin": {"Alış": "4.000,00", "Satış": "4.000,00"},
            "14-ayar-altin": {"Alış": "2.400,00", "Satış": "2.420,00"},
        }
        quotes = truncgil.parse(payload, ts=NOW)
        fourteen = [q for q in quotes if q.instrument_id == "14ayar"]
        assert len(fourteen) == 1
        assert fourteen[0].source == "truncgil"
        assert fourteen[0].price == pytest.approx(2410.0)

    @respx.mock
    async def test_non_json_is_parsing_error(self, truncgil):
        respx.get(TRUNCGIL_URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ParsingError):
            await truncgil.fetch_current()

    def test_non_object_payload(self, truncgil):
        with pytest.raises(ParsingError, match="must be an object"):
            truncgil.parse(["gram-altin"], ts=NOW)

    def test_empty_payload_yields_nothing(self, truncgil):
        assert truncgil.parse({}, ts=NOW) == []


# --- TCMB ---


class TestTcmb:
    def test_historical_url(self):
        assert (
            historical_url(datetime(2025, 5, 30).date())
            == f"{TCMB_BASE_URL}/202505/30052025.xml"
        )

    def test_parse(self, tcmb):
        quotes = tcmb.parse(TCMB_XML, ts=NOW)
        by_id = {q.instrument_id: q for q in quotes}

        assert set(by_id) == {"USDTRY", "EURTRY", "JPYTRY", "EURUSD"}
        assert by_id["USDTRY"].buy == pytest.approx(39.154)
        assert by_id["USDTRY"].sell == pytest.approx(39.2246)
        assert by_id["USDTRY"].price == pytest.approx((39.154 + 39.2246) / 2)
        assert by_id["USDTRY"].source == "tcmb"

    def test_one_sided_rate(self, tcmb):
        jpy = next(q for q in tcmb.parse(TCMB_XML, ts=NOW) if q.instrument_id == "JPYTRY")
        assert jpy.sell is None
        assert jpy.price == pytest.approx(27.1234)
        assert jpy.raw_data["Unit"] == "100"

    def test_cross_rate(self, tcmb):
        by_id = {q.instrument_id: q for q in tcmb.parse(TCMB_XML, ts=NOW)}
        eurusd = by_id["EURUSD"]
        assert eurusd.source == "tcmb_calculated"
        assert eurusd.price == pytest.approx(by_id["EURTRY"].price / by_id["USDTRY"].price)

    def test_not_a_bulletin(self, tcmb):
        with pytest.raises(ParsingError, match="no Currency"):
            tcmb.parse("<html><body>Servis disi</body></html>", ts=NOW)

    def test_no_currencies(self, tcmb):
        with pytest.raises(ParsingError, match="no Currency"):
            tcmb.parse("<Tarih_Date></Tarih_Date>", ts=NOW)

    def test_logs_pairs_missing_from_bulletin(self, tcmb, caplog):
        tcmb.parse(TCMB_XML, ts=NOW)
        missing = [r.getMessage() for r in caplog.records if "no entry" in r.getMessage()]
        assert missing == ["TCMB: bulletin has no entry for GBP, CHF, AUD, CAD, SAR"]

    def test_overlong_rate_is_dropped(self, tcmb, caplog):
        xml = TCMB_XML.replace("<ForexBuying>39.1540</ForexBuying>", f"<ForexBuying>{'9' * 400}</ForexBuying>")
        by_id = {q.instrument_id: q for q in tcmb.parse(xml, ts=NOW)}
        assert by_id["USDTRY"].buy is None
        assert by_id["USDTRY"].price == pytest.approx(39.2246)

    @respx.mock
    async def test_fetch_current(self, tcmb):
        respx.get(f"{TCMB_BASE_URL}/today.xml").mock(
            return_value=httpx.Response(200, text=TCMB_XML)
        )
        quotes = await tcmb.fetch_current()
        assert all(q.ts == NOW for q in quotes)

    @respx.mock
    async def test_fetch_current_404_propagates(self, tcmb):
        respx.get(f"{TCMB_BASE_URL}/today.xml").mock(return_value=httpx.Response(404))
        with pytest.raises(NoDataAvailable):
            await tcmb.fetch_current()

    @respx.mock
    async def test_fetch_history_skips_weekends_and_holidays(self, tcmb):
        friday = respx.get(f"{TCMB_BASE_URL}/202505/30052025.xml").mock(
            return_value=httpx.Response(200, text=TCMB_XML)
        )
        monday = respx.get(f"{TCMB_BASE_URL}/202506/02062025.xml").mock(
            return_value=httpx.Response(404)
        )

        quotes = await tcmb.fetch_history(
            "USDTRY", datetime(2025, 5, 30), datetime(2025, 6, 2)
        )

        assert friday.call_count == 1
        assert monday.call_count == 1
        assert len(quotes) == 1
        assert quotes[0].instrument_id == "USDTRY"
        assert quotes[0].ts == day_timestamp(datetime(2025, 5, 30).date())

    @respx.mock
    async def test_fetch_history_all_pairs_survives_bad_day(self, tcmb):
        respx.get(f"{TCMB_BASE_URL}/202506/02062025.xml").mock(
            return_value=httpx.Response(200, text=TCMB_XML)
        )
        respx.get(f"{TCMB_BASE_URL}/202506/03062025.xml").mock(
            return_value=httpx.Response(200, text="garbage")
        )

        quotes = await tcmb.fetch_history("*", datetime(2025, 6, 2), datetime(2025, 6, 3))
        assert {q.instrument_id for q in quotes} == {"USDTRY", "EURTRY", "JPYTRY", "EURUSD"}


# --- exchangerate.host ---


class TestExchangeRate:
    @respx.mock
    async def test_fetch_current(self, exchangerate):
        route = respx.get(url__startswith=EXCHANGERATE_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "success": True,
                    "base": "EUR",
                    "rates": {"USD": 1.14, "GBP": 0.84, "TRY": 44.68},
                },
            )
        )

        quotes = await exchangerate.fetch_current()
        by_id = {q.instrument_id: q for q in quotes}

        symbols = route.calls.last.request.url.params["symbols"].split(",")
        assert "TRY" in symbols and "USD" in symbols
        assert by_id["EURTRY"].price == pytest.approx(44.68)
        assert by_id["USDTRY"].price == pytest.approx(44.68 / 1.14)
        assert by_id["USDTRY"].buy is None
        assert by_id["USDTRY"].source == "exchangerate_host"
        assert by_id["EURUSD"].price == pytest.approx(1.14)
        assert by_id["EURUSD"].source == "exchangerate_host_calculated"

    def test_failure_flag(self, exchangerate):
        with pytest.raises(ParsingError, match="reported failure"):
            exchangerate.parse({"success": False, "error": {"code": 101}}, ts=NOW)

    def test_missing_try_rate(self, exchangerate):
        with pytest.raises(ParsingError, match="TRY"):
            exchangerate.parse({"success": True, "rates": {"USD": 1.1}}, ts=NOW)


# --- altin.in ---


ALTININ_BODY = (
    "var grafik = {satis:[2450.5,2461.25,abc,2470],"
    'tarih:["2 Haziran 2025","3 Haziran 2025","4 Haziran 2025","99 Foo 2025"]};'
)


class TestAltinIn:
    def test_parse(self, altinin):
        quotes = altinin.parse("Y14", ALTININ_BODY)
        assert [q.price for q in quotes] == [2450.5, 2461.25]
        assert all(q.instrument_id == "14ayar" for q in quotes)
        assert all(q.buy is None and q.sell == q.price for q in quotes)
        assert quotes[0].ts == int(datetime(2025, 6, 2, 12, tzinfo=UTC).timestamp())
        assert quotes[0].source == "altin_in"

    def test_missing_arrays(self, altinin):
        with pytest.raises(ParsingError, match="satis/tarih"):
            altinin.parse("Y14", "<html>maintenance</html>")

    @respx.mock
    async def test_fetch_history_decodes_cp1254_and_trims(self, altinin):
        body = 'satis:[2400,2410],tarih:["28 Şubat 2025","3 Haziran 2025"]'.encode("cp1254")
        route = respx.get(url__startswith=ALTININ_URL).mock(
            return_value=httpx.Response(200, content=body)
        )

        start = datetime(2025, 6, 1, tzinfo=UTC)
        end = datetime(2025, 6, 4, 12, tzinfo=UTC)
        quotes = await altinin.fetch_history("Y14", start, end)

        params = route.calls.last.request.url.params
        assert params["kur"] == "Y14"
        assert params["gun"] == "4"
        assert [q.price for q in quotes] == [2410.0]

    @respx.mock
    async def test_fetch_days_includes_old_rows(self, altinin):
        body = 'satis:[2400],tarih:["28 Şubat 2025"]'.encode("cp1254")
        respx.get(url__startswith=ALTININ_URL).mock(
            return_value=httpx.Response(200, content=body)
        )
        quotes = await altinin.fetch_days("Y14", 120)
        assert quotes[0].ts == int(datetime(2025, 2, 28, 12, tzinfo=UTC).timestamp())
