"""Tests for the Finnhub quote source and payload parsing."""
import json

import httpx
import pytest

from heatmap.core.config import HeatmapConfig
from heatmap.market.quote_source import (
    FinnhubQuoteSource,
    MalformedResponseError,
    RateLimitedError,
    TransientNetworkError,
    YFinanceQuoteSource,
    create_quote_source,
    parse_market_status,
    parse_quote,
)


def _source(handler) -> FinnhubQuoteSource:
    client = httpx.AsyncClient(
        base_url="https://finnhub.test/api/v1",
        headers={"X-Finnhub-Token": "test-key"},
        transport=httpx.MockTransport(handler),
    )
    return FinnhubQuoteSource(api_key="test-key", client=client)


class TestParsing:
    """Tests for payload validation."""

    def test_parse_quote(self):
        quote = parse_quote("AAPL", {"c": 105.0, "pc": 100.0, "dp": 5.0})
        assert quote.current_price == 105.0
        assert quote.prior_close == 100.0
        assert quote.percent_change == 5.0

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {},
        {"c": 0},
        {"c": -3.0},
        {"c": "105"},
        {"c": float("nan")},
        {"c": True},
    ])
    def test_invalid_quote(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_quote("AAPL", payload)

    def test_optional_fields_dropped_when_invalid(self):
        quote = parse_quote("AAPL", {"c": 105.0, "pc": 0, "dp": None})
        assert quote.prior_close is None
        assert quote.percent_change is None

    def test_market_status(self):
        status = parse_market_status("US", {"isOpen": False, "session": "pre-market"})
        assert not status.is_open
        assert status.session == "pre-market"

    def test_market_status_without_state(self):
        with pytest.raises(MalformedResponseError):
            parse_market_status("US", {"exchange": "US"})


class TestFinnhubQuoteSource:
    """Tests for FinnhubQuoteSource over a mock transport."""

    @pytest.mark.asyncio
    async def test_fetch_quote(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["symbol"] = request.url.params["symbol"]
            seen["token"] = request.headers.get("X-Finnhub-Token")
            return httpx.Response(200, json={"c": 105.0, "pc": 100.0, "dp": 5.0})

        source = _source(handler)
        quote = await source.fetch_quote("AAPL")
        await source.aclose()
        assert quote.ticker == "AAPL"
        assert quote.current_price == 105.0
        assert seen == {"path": "/api/v1/quote", "symbol": "AAPL", "token": "test-key"}

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        source = _source(lambda request: httpx.Response(429, json={"error": "limit"}))
        with pytest.raises(RateLimitedError):
            await source.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        source = _source(lambda request: httpx.Response(503))
        with pytest.raises(TransientNetworkError):
            await source.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = _source(handler)
        with pytest.raises(TransientNetworkError):
            await source.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        source = _source(handler)
        with pytest.raises(TransientNetworkError):
            await source.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        source = _source(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(MalformedResponseError):
            await source.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_zero_price_is_malformed(self):
        source = _source(lambda request: httpx.Response(200, json={"c": 0, "pc": 0, "dp": None}))
        with pytest.raises(MalformedResponseError):
            await source.fetch_quote("ZZZZ")

    @pytest.mark.asyncio
    async def test_market_status(self):
        def handler(request):
            assert request.url.params["exchange"] == "US"
            return httpx.Response(200, json={"exchange": "US", "isOpen": True, "session": "regular"})

        status = await _source(handler).fetch_market_status("US")
        assert status.is_open
        assert status.exchange == "US"

    @pytest.mark.asyncio
    async def test_history(self):
        def handler(request):
            assert request.url.params["resolution"] == "1"
            assert request.url.params["from"] == "1000"
            assert request.url.params["to"] == "22600"
            body = {"s": "ok", "c": [1.0, 2.0, None, 3.0], "t": [1, 2, 3, 4]}
            return httpx.Response(200, content=json.dumps(body).encode())

        prices = await _source(handler).fetch_history("AAPL", 1000.0, 22600.0)
        assert prices == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_history_no_data(self):
        prices = await _source(lambda request: httpx.Response(200, json={"s": "no_data"})).fetch_history("AAPL", 0, 1)
        assert prices == []


class TestCreateQuoteSource:
    """Tests for provider selection."""

    def test_finnhub(self):
        assert isinstance(create_quote_source(HeatmapConfig(provider="finnhub", finnhub_api_key="k")),
                          FinnhubQuoteSource)

    def test_yfinance(self):
        assert isinstance(create_quote_source(HeatmapConfig(provider="yfinance")), YFinanceQuoteSource)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_quote_source(HeatmapConfig(provider="nope"))

    def test_proxy_base(self):
        config = HeatmapConfig(proxy_base="https://proxy.example/")
        assert config.rest_base == "https://proxy.example/api"
