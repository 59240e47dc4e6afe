"""Instruments, price history, simulation and live quote sources."""
from .catalog import Instrument, InstrumentCatalog, exchange_for_ticker, default_live_tickers
from .history import HistoryBuffer
from .simulation import SimulationGenerator, uniform_noise
from heatmap.core.backoff import ReconnectPolicy
from .rate_limiter import RateLimiter, LimiterState, LimiterStatus
from .quote_source import (
    Quote, MarketStatus, QuoteSource, FinnhubQuoteSource, YFinanceQuoteSource,
    QuoteSourceError, TransientNetworkError, RateLimitedError, MalformedResponseError,
    QuoteCancelledError, create_quote_source,
)
from .session import MarketStatusCache, SessionStatusResolver

__all__ = [
    "Instrument", "InstrumentCatalog", "exchange_for_ticker", "default_live_tickers",
    "HistoryBuffer",
    "SimulationGenerator", "uniform_noise",
    "RateLimiter", "ReconnectPolicy", "LimiterState", "LimiterStatus",
    "Quote", "MarketStatus", "QuoteSource", "FinnhubQuoteSource", "YFinanceQuoteSource",
    "QuoteSourceError", "TransientNetworkError", "RateLimitedError", "MalformedResponseError",
    "QuoteCancelledError", "create_quote_source",
    "MarketStatusCache", "SessionStatusResolver",
]
