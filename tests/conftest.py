"""Pytest configuration and shared fixtures."""
import asyncio
from typing import Dict, List, Optional, Set, Union

import pytest

from heatmap.core.config import HeatmapConfig
from heatmap.core.event_bus import EventBus
from heatmap.engine.reconciliation import ReconciliationEngine
from heatmap.market.catalog import InstrumentCatalog
from heatmap.market.quote_source import (
    MarketStatus,
    Quote,
    QuoteSource,
    TransientNetworkError,
)

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeQuoteSource(QuoteSource):
    """In-memory quote source.

    ``quotes`` maps ticker to a Quote or an exception instance to raise. A ticker
    with an entry in ``gates`` blocks its next call until the event is set. A
    ticker in ``uncancellable`` keeps waiting on its gate through cancellation,
    like a response already on the wire; its task is kept in ``held_tasks``.
    """

    name = "fake"

    def __init__(self):
        self.quotes: Dict[str, Union[Quote, Exception]] = {}
        self.statuses: Dict[str, Union[MarketStatus, Exception]] = {}
        self.history: Dict[str, Union[List[float], Exception]] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.uncancellable: Set[str] = set()
        self.held_tasks: List[asyncio.Task] = []
        self.closed = False

    def set_quote(self, ticker: str, price: float, prior_close: Optional[float] = None,
                  percent: Optional[float] = None) -> None:
        self.quotes[ticker] = Quote(ticker=ticker, current_price=price, prior_close=prior_close,
                                    percent_change=percent)

    async def fetch_quote(self, ticker: str) -> Quote:
        self.calls.append(("quote", ticker))
        gate = self.gates.pop(ticker, None)
        # Snapshot the answer at send time
        result = self.quotes.get(ticker)
        if gate is not None and ticker in self.uncancellable:
            self.held_tasks.append(asyncio.current_task())
            while not gate.is_set():
                try:
                    await gate.wait()
                except asyncio.CancelledError:
                    continue
        elif gate is not None:
            await gate.wait()
            result = self.quotes.get(ticker)
        if result is None:
            raise TransientNetworkError("no quote configured", ticker)
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_market_status(self, exchange: str) -> MarketStatus:
        self.calls.append(("status", exchange))
        result = self.statuses.get(exchange, MarketStatus(exchange=exchange, is_open=True, session="open"))
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_history(self, ticker: str, start: float, end: float) -> List[float]:
        self.calls.append(("history", ticker, start, end))
        result = self.history.get(ticker, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def aclose(self) -> None:
        self.closed = True


ROWS = [
    ("AAPL", "Apple Inc.", "Technology", 100.0),
    ("MSFT", "Microsoft", "Technology", 200.0),
    ("XOM", "Exxon Mobil", "Energy", 50.0),
    ("SIMX", "Simulated Co", "Biotech", 10.0),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return HeatmapConfig(
        random_seed=7,
        provider="finnhub",
        finnhub_api_key="test-key",
        proxy_base=None,
        snapshot_path=str(tmp_path / "state.json"),
    )


@pytest.fixture
def catalog():
    return InstrumentCatalog.from_rows(ROWS)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def source():
    return FakeQuoteSource()


@pytest.fixture
def engine(catalog, source, config, bus, clock):
    """Engine over four instruments; SIMX is never sourced live."""
    return ReconciliationEngine(
        catalog,
        source=source,
        config=config,
        bus=bus,
        clock=clock,
        live_tickers=["AAPL", "MSFT", "XOM"],
    )
