"""Tests for replaydesk.market — candle models, synthetic data, provider client, loader."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from replaydesk.config import Config
from replaydesk.errors import ConfigurationError, DataUnavailable
from replaydesk.market.instruments import (
    format_pair,
    price_precision,
    provider_symbol,
    round_money,
    round_price,
)
from replaydesk.market.loader import CandleLoader
from replaydesk.market.models import Candle, CandleSeries, interval_duration
from replaydesk.market.synthetic import generate_series
from replaydesk.market.twelvedata_client import TwelveDataClient


# ── Helpers ──────────────────────────────────────────────────────────────

T0 = datetime(2025, 1, 10, tzinfo=timezone.utc)


def _make_candle(i, close, spread=1.0):
    return Candle(
        time=T0 + timedelta(hours=i),
        open=close, high=close + spread, low=close - spread, close=close,
    )


def _make_config(api_key="td-key") -> Config:
    return Config(
        twelvedata_api_key=api_key,
        twelvedata_base_url="https://api.twelvedata.com",
        default_interval="1h",
        candle_limit=100,
        base_tick_seconds=1.0,
        starting_balance=10000.0,
        request_timeout_seconds=5.0,
        enforce_stops=False,
        log_level="INFO",
        api_port=8080,
    )


class _StubProvider:
    """Duck-typed provider returning canned candles (or raising)."""

    def __init__(self, candles=None, exc=None):
        self.candles = candles or []
        self.exc = exc
        self.calls = []

    async def fetch_candles(self, symbol, interval, limit=1000):
        self.calls.append((symbol, interval, limit))
        if self.exc is not None:
            raise self.exc
        return list(self.candles)


# ── Mock Twelve Data responses ───────────────────────────────────────────

MOCK_TIME_SERIES_RESPONSE = {
    "meta": {"symbol": "EUR/USD", "interval": "1h"},
    "values": [
        {
            "datetime": "2025-01-10 15:00:00",
            "open": "1.09300", "high": "1.09700", "low": "1.09100", "close": "1.09600",
        },
        {
            "datetime": "2025-01-10 14:00:00",
            "open": "1.09100", "high": "1.09500", "low": "1.08900", "close": "1.09300",
            "volume": "12345",
        },
    ],
    "status": "ok",
}


# ── Candle / CandleSeries ────────────────────────────────────────────────


class TestCandleModels:
    def test_candle_rejects_low_above_body(self):
        with pytest.raises(ValueError, match="low"):
            Candle(time=T0, open=10.0, high=12.0, low=10.5, close=11.0)

    def test_candle_rejects_high_below_body(self):
        with pytest.raises(ValueError, match="high"):
            Candle(time=T0, open=10.0, high=10.5, low=9.0, close=11.0)

    def test_series_rejects_unordered_times(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            CandleSeries([_make_candle(1, 10.0), _make_candle(0, 11.0)])

    def test_series_rejects_duplicate_times(self):
        with pytest.raises(ValueError):
            CandleSeries([_make_candle(0, 10.0), _make_candle(0, 11.0)])

    def test_from_candles_sorts_and_dedups(self):
        series = CandleSeries.from_candles(
            [_make_candle(2, 12.0), _make_candle(0, 10.0), _make_candle(2, 13.0)],
        )
        assert [c.close for c in series] == [10.0, 13.0]

    def test_prefix_is_inclusive(self):
        series = CandleSeries([_make_candle(i, 10.0 + i) for i in range(5)])
        assert [c.close for c in series.prefix(2)] == [10.0, 11.0, 12.0]
        assert series.prefix(-1) == ()
        assert len(series.prefix(99)) == 5

    def test_interval_duration(self):
        assert interval_duration("4h") == timedelta(hours=4)
        with pytest.raises(ConfigurationError, match="Unsupported interval"):
            interval_duration("3h")


# ── Instruments ──────────────────────────────────────────────────────────


class TestInstruments:
    def test_provider_symbol(self):
        assert provider_symbol("EURUSD") == "EUR/USD"
        assert provider_symbol("GER40") == "DAX"
        assert provider_symbol("UNKNOWN") == "UNKNOWN"

    def test_format_pair(self):
        assert format_pair("XAUUSD") == "XAU/USD"

    def test_precision(self):
        assert price_precision("EURUSD") == 5
        assert price_precision("USDJPY") == 3
        assert price_precision("XAUUSD") == 2
        assert price_precision("NOPE") == 5

    def test_rounding(self):
        assert round_price("USDJPY", 150.123456) == 150.123
        assert round_price("EURUSD", None) is None
        assert round_money(12.3456) == 12.35


# ── Synthetic fallback ───────────────────────────────────────────────────


class TestSyntheticSeries:
    def test_length_and_source(self):
        series = generate_series("EURUSD", "1h", 50, end=T0)
        assert len(series) == 50
        assert series.source == "synthetic"
        assert series.instrument == "EURUSD"
        assert series.interval == "1h"

    def test_deterministic_per_instrument(self):
        a = generate_series("EURUSD", "1h", 30, end=T0)
        b = generate_series("EURUSD", "1h", 30, end=T0)
        c = generate_series("GBPUSD", "1h", 30, end=T0)
        assert a.candles == b.candles
        assert [x.close for x in a] != [x.close for x in c]

    def test_times_step_by_interval_and_end_at_end(self):
        series = generate_series("EURUSD", "4h", 10, end=T0)
        assert series[-1].time == T0
        for prev, cur in zip(series, series[1:]):
            assert cur.time - prev.time == timedelta(hours=4)

    def test_candles_valid_and_volume_in_range(self):
        for c in generate_series("BTCUSD", "1day", 200, end=T0):
            assert c.low <= min(c.open, c.close)
            assert c.high >= max(c.open, c.close)
            assert c.low > 0
            assert 1000 <= c.volume < 11000

    def test_prices_rounded_to_instrument_precision(self):
        for c in generate_series("USDJPY", "1h", 20, end=T0):
            assert round(c.close, 3) == c.close

    def test_default_end_floored_to_interval(self):
        series = generate_series("EURUSD", "1h", 3)
        last = series[-1].time
        assert last.minute == 0 and last.second == 0
        assert last <= datetime.now(timezone.utc)

    def test_zero_limit_gives_empty_series(self):
        assert len(generate_series("EURUSD", "1h", 0, end=T0)) == 0


# ── Twelve Data client ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_time_series(monkeypatch):
    """Candles parsed from mock JSON, oldest first, in UTC."""
    client = TwelveDataClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, params=None, timeout=None):
        captured.update(params)
        return httpx.Response(
            200, json=MOCK_TIME_SERIES_RESPONSE, request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("EUR/USD", "1h", limit=2)
    assert len(candles) == 2
    assert candles[0].time == datetime(2025, 1, 10, 14, tzinfo=timezone.utc)
    assert candles[0].open == pytest.approx(1.091)
    assert candles[0].close == pytest.approx(1.093)
    assert candles[0].volume == 12345.0
    assert candles[1].volume is None
    assert captured["symbol"] == "EUR/USD"
    assert captured["outputsize"] == 2
    assert captured["apikey"] == "td-key"


@pytest.mark.asyncio
async def test_error_payload_raises_data_unavailable(monkeypatch):
    client = TwelveDataClient(_make_config())

    async def _mock_get(self, url, *, params=None, timeout=None):
        return httpx.Response(
            200,
            json={"status": "error", "code": 429, "message": "API credits exhausted"},
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(DataUnavailable, match="credits"):
        await client.fetch_candles("EUR/USD", "1h")


@pytest.mark.asyncio
async def test_http_error_raises_data_unavailable(monkeypatch):
    client = TwelveDataClient(_make_config())

    async def _mock_get(self, url, *, params=None, timeout=None):
        return httpx.Response(500, json={}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(DataUnavailable):
        await client.fetch_candles("EUR/USD", "1h")


@pytest.mark.asyncio
async def test_empty_values_raise_data_unavailable(monkeypatch):
    client = TwelveDataClient(_make_config())

    async def _mock_get(self, url, *, params=None, timeout=None):
        return httpx.Response(
            200, json={"status": "ok", "values": []}, request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(DataUnavailable, match="no candles"):
        await client.fetch_candles("EUR/USD", "1h")


@pytest.mark.asyncio
async def test_missing_api_key_raises_without_request(monkeypatch):
    client = TwelveDataClient(_make_config(api_key=""))

    async def _mock_get(self, url, *, params=None, timeout=None):  # pragma: no cover
        raise AssertionError("should not be called")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(DataUnavailable, match="not configured"):
        await client.fetch_candles("EUR/USD", "1h")


# ── Loader ───────────────────────────────────────────────────────────────


class TestCandleLoader:
    @pytest.mark.asyncio
    async def test_load_from_provider(self):
        provider = _StubProvider([_make_candle(1, 11.0), _make_candle(0, 10.0)])
        series = await CandleLoader(provider).load("EURUSD", "1h", 2)
        assert series.source == "provider"
        assert [c.close for c in series] == [10.0, 11.0]
        assert provider.calls == [("EUR/USD", "1h", 2)]

    @pytest.mark.asyncio
    async def test_load_without_provider_raises(self):
        with pytest.raises(DataUnavailable):
            await CandleLoader(None).load("EURUSD", "1h", 10)

    @pytest.mark.asyncio
    async def test_load_wraps_provider_failure(self):
        provider = _StubProvider(exc=RuntimeError("boom"))
        with pytest.raises(DataUnavailable, match="boom"):
            await CandleLoader(provider).load("EURUSD", "1h", 10)

    @pytest.mark.asyncio
    async def test_load_empty_result_raises(self):
        with pytest.raises(DataUnavailable):
            await CandleLoader(_StubProvider([])).load("EURUSD", "1h", 10)

    @pytest.mark.asyncio
    async def test_unknown_interval_rejected(self):
        with pytest.raises(ConfigurationError):
            await CandleLoader(_StubProvider([_make_candle(0, 1.0)])).load(
                "EURUSD", "7h", 10,
            )

    @pytest.mark.asyncio
    async def test_fallback_to_synthetic(self, caplog):
        loader = CandleLoader(_StubProvider(exc=DataUnavailable("down")))
        with caplog.at_level("WARNING", logger="replaydesk.market"):
            series = await loader.load_with_fallback("EURUSD", "1h", 25, end=T0)
        assert series.source == "synthetic"
        assert len(series) == 25
        assert "synthetic" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_not_used_when_provider_works(self):
        loader = CandleLoader(_StubProvider([_make_candle(0, 10.0)]))
        series = await loader.load_with_fallback("EURUSD", "1h", 1)
        assert series.source == "provider"
