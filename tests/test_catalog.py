"""Tests for the instrument catalog."""
import pytest

from heatmap.market.catalog import (
    LIVE_ASSETS,
    SIMULATION_ONLY_ASSETS,
    Instrument,
    InstrumentCatalog,
    default_live_tickers,
    exchange_for_ticker,
)


class TestExchangeMapping:
    """Tests for ticker to exchange mapping."""

    def test_default_exchange(self):
        assert exchange_for_ticker("AAPL") == "US"

    def test_suffix(self):
        assert exchange_for_ticker("VOD.L") == "L"
        assert exchange_for_ticker("BMW.DE") == "DE"

    def test_mapped(self):
        assert exchange_for_ticker("SHEL") == "US"


class TestInstrumentCatalog:
    """Tests for InstrumentCatalog."""

    def test_default_lists(self):
        catalog = InstrumentCatalog.default()
        assert len(catalog) == len(LIVE_ASSETS) + len(SIMULATION_ONLY_ASSETS)
        assert len(InstrumentCatalog.default(include_simulation_assets=False)) == len(LIVE_ASSETS)
        assert set(default_live_tickers()) <= set(catalog.tickers)

    def test_lookup(self):
        catalog = InstrumentCatalog.from_rows([("AAPL", "Apple Inc.", "Technology", 100.0)])
        assert "AAPL" in catalog
        assert catalog["AAPL"].name == "Apple Inc."
        assert catalog.get("NOPE") is None
        assert catalog.index_of("AAPL") == 0
        with pytest.raises(KeyError):
            catalog["NOPE"]

    def test_duplicate_rejected(self):
        with pytest.raises(ValueError):
            InstrumentCatalog.from_rows([("A", "a", "s", 1.0), ("A", "b", "s", 2.0)])

    def test_non_positive_price_rejected(self):
        with pytest.raises(ValueError):
            InstrumentCatalog([Instrument("A", "a", "s", 0.0)])

    def test_active_exchanges(self):
        catalog = InstrumentCatalog.from_rows([
            ("AAPL", "Apple", "Tech", 1.0),
            ("VOD.L", "Vodafone", "Telecom", 1.0),
            ("MSFT", "Microsoft", "Tech", 1.0),
        ])
        assert catalog.active_exchanges() == ["US", "L"]
        assert catalog.active_exchanges(["MSFT"]) == ["US"]
