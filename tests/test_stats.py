"""Tests for aggregate stats and view filtering."""
import pytest

from heatmap.engine.stats import EMPTY_STATS, SortKey, ViewCategory, ViewFilter, compute_stats
from heatmap.market.catalog import Instrument, InstrumentCatalog
from heatmap.state import Classification, Thresholds, TileState


def _tile(ticker, change, price=100.0):
    return TileState(ticker=ticker, price=price, base_price=100.0, change_pct=change)


@pytest.fixture
def pairs():
    catalog = InstrumentCatalog.from_rows([
        ("AAPL", "Apple Inc.", "Technology", 100.0),
        ("XOM", "Exxon Mobil", "Energy", 50.0),
        ("JPM", "JP Morgan", "Financial", 150.0),
        ("KO", "Coca-Cola", "Consumer", 60.0),
    ])
    tiles = {
        "AAPL": _tile("AAPL", 4.0, 104.0),
        "XOM": _tile("XOM", -1.0, 49.5),
        "JPM": _tile("JPM", 0.2, 150.3),
        "KO": _tile("KO", -3.5, 57.9),
    }
    return [(inst, tiles[inst.ticker]) for inst in catalog]


class TestComputeStats:
    """Tests for compute_stats."""

    def test_counts_and_metrics(self):
        tiles = [_tile("A", 1.0), _tile("B", -2.0), _tile("C", 0.1), _tile("D", 3.0)]
        stats = compute_stats(tiles, Thresholds())
        assert stats.gaining == 2
        assert stats.losing == 1
        assert stats.mean_change == pytest.approx(0.525)
        assert stats.temperature == pytest.approx((2 - 1) / 4 * 50)
        assert stats.volatility == pytest.approx(5.25)
        assert stats.visible_count == 4

    def test_boundary_values_are_neutral(self):
        stats = compute_stats([_tile("A", 0.5), _tile("B", -0.5)])
        assert stats.gaining == 0
        assert stats.losing == 0

    @pytest.mark.parametrize("change,expected", [
        (3.0, Classification.GAIN),
        (0.5, Classification.NEUTRAL),
        (-0.5, Classification.NEUTRAL),
        (-3.0, Classification.LOSS),
        (3.01, Classification.STRONG_GAIN),
        (-3.01, Classification.STRONG_LOSS),
    ])
    def test_classification_agrees_with_counts_and_filter(self, change, expected):
        thresholds = Thresholds()
        tile = _tile("A", change)
        inst = Instrument(ticker="A", name="A Corp", sector="Technology", initial_price=100.0)
        assert thresholds.classify(change) is expected

        stats = compute_stats([tile], thresholds)
        gaining = expected in (Classification.GAIN, Classification.STRONG_GAIN)
        losing = expected in (Classification.LOSS, Classification.STRONG_LOSS)
        assert stats.gaining == int(gaining)
        assert stats.losing == int(losing)
        assert ViewFilter(category=ViewCategory.GAINING).matches(inst, tile, thresholds) is gaining
        assert ViewFilter(category=ViewCategory.LOSING).matches(inst, tile, thresholds) is losing
        assert ViewFilter(category=ViewCategory.NEUTRAL).matches(inst, tile, thresholds) is (
            expected is Classification.NEUTRAL
        )

    def test_empty(self):
        assert compute_stats([]) == EMPTY_STATS
        assert EMPTY_STATS.temperature == 0.0

    def test_to_dict(self):
        data = compute_stats([_tile("A", 1.23456)]).to_dict()
        assert data["mean_change"] == 1.2346
        assert data["visible_count"] == 1


class TestViewFilter:
    """Tests for ViewFilter."""

    def test_default_keeps_catalog_order(self, pairs):
        assert [i.ticker for i, _ in ViewFilter().apply(pairs)] == ["AAPL", "XOM", "JPM", "KO"]
        assert not ViewFilter().is_filtered

    def test_categories(self, pairs):
        assert [i.ticker for i, _ in ViewFilter(category=ViewCategory.GAINING).apply(pairs)] == ["AAPL"]
        assert [i.ticker for i, _ in ViewFilter(category=ViewCategory.LOSING).apply(pairs)] == ["XOM", "KO"]
        assert [i.ticker for i, _ in ViewFilter(category=ViewCategory.NEUTRAL).apply(pairs)] == ["JPM"]

    def test_search_is_case_insensitive(self, pairs):
        view = ViewFilter(search="  coca ")
        assert view.is_filtered
        assert [i.ticker for i, _ in view.apply(pairs)] == ["KO"]
        assert [i.ticker for i, _ in ViewFilter(search="energy").apply(pairs)] == ["XOM"]

    def test_sorts(self, pairs):
        def order(sort):
            return [i.ticker for i, _ in ViewFilter(sort=sort).apply(pairs)]

        assert order(SortKey.CHANGE_DESC) == ["AAPL", "JPM", "XOM", "KO"]
        assert order(SortKey.CHANGE_ASC) == ["KO", "XOM", "JPM", "AAPL"]
        assert order(SortKey.TICKER) == ["AAPL", "JPM", "KO", "XOM"]
        assert order(SortKey.PRICE) == ["JPM", "AAPL", "KO", "XOM"]
