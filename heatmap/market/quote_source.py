"""Live quote feeds: Finnhub REST over httpx, with yfinance as a keyless alternative.

A source only fetches and validates. Budget and cool-down are the caller's job
(see ``RateLimiter``); a source reports a provider-side rate limit by raising
``RateLimitedError``.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from heatmap.core.config import HeatmapConfig, get_config
from heatmap.core.logger import get_logger

logger = get_logger(__name__)


class QuoteSourceError(Exception):
    """Base class for every quote-source failure."""

    def __init__(self, message: str, ticker: Optional[str] = None):
        super().__init__(message)
        self.ticker = ticker


class TransientNetworkError(QuoteSourceError):
    """Timeout, connection error or non-success status. Retried on the next poll."""


class RateLimitedError(QuoteSourceError):
    """Provider refused the call for exceeding its rate limit."""


class MalformedResponseError(QuoteSourceError):
    """Payload missing or carrying invalid numeric fields."""


class QuoteCancelledError(QuoteSourceError):
    """Request belonged to a batch that was superseded."""


@dataclass(frozen=True)
class Quote:
    ticker: str
    current_price: float
    prior_close: Optional[float] = None
    percent_change: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MarketStatus:
    exchange: str
    is_open: bool
    session: str = "closed"
    timestamp: float = field(default_factory=time.time)


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def parse_quote(ticker: str, payload: Any) -> Quote:
    """Validate a ``{c, pc, dp}`` quote payload."""
    if not isinstance(payload, dict):
        raise MalformedResponseError("quote payload is not an object", ticker)
    price = _finite(payload.get("c"))
    if price is None or price <= 0:
        raise MalformedResponseError(f"invalid current price {payload.get('c')!r}", ticker)
    prior = _finite(payload.get("pc"))
    return Quote(
        ticker=ticker,
        current_price=price,
        prior_close=prior if prior is not None and prior > 0 else None,
        percent_change=_finite(payload.get("dp")),
    )


def parse_market_status(exchange: str, payload: Any) -> MarketStatus:
    if not isinstance(payload, dict) or not any(k in payload for k in ("isOpen", "session", "market")):
        raise MalformedResponseError(f"market status payload for {exchange} has no state")
    session = payload.get("session") or payload.get("market")
    is_open = payload.get("isOpen") is True or session == "open"
    if not isinstance(session, str) or not session:
        session = "open" if is_open else "closed"
    return MarketStatus(exchange=exchange, is_open=is_open, session=session.lower())


class QuoteSource:
    """Asynchronous, fallible quote capability."""

    name = "base"

    async def fetch_quote(self, ticker: str) -> Quote:
        raise NotImplementedError

    async def fetch_market_status(self, exchange: str) -> MarketStatus:
        raise NotImplementedError

    async def fetch_history(self, ticker: str, start: float, end: float) -> List[float]:
        """Closing prices between two epoch-second bounds, oldest first."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class FinnhubQuoteSource(QuoteSource):
    """Finnhub REST API, directly or through a key-holding proxy."""

    name = "finnhub"

    def __init__(
        self,
        api_key: str = "",
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Finnhub-Token"] = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url or "https://finnhub.io/api/v1",
            headers=headers,
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: Optional[HeatmapConfig] = None) -> "FinnhubQuoteSource":
        config = config or get_config()
        if not config.finnhub_api_key and not config.proxy_base:
            logger.warning("finnhub_no_api_key")
        return cls(
            api_key="" if config.proxy_base else config.finnhub_api_key,
            base_url=config.rest_base,
            timeout=config.request_timeout_s,
        )

    async def _get(self, path: str, params: Dict[str, Any], ticker: Optional[str] = None) -> Any:
        try:
            resp = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"timeout: {e}", ticker) from e
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"connection error: {e}", ticker) from e

        if resp.status_code == 429:
            raise RateLimitedError("rate limited (429)", ticker)
        if resp.status_code >= 400:
            raise TransientNetworkError(f"HTTP {resp.status_code}", ticker)
        try:
            return resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"invalid JSON: {e}", ticker) from e

    async def fetch_quote(self, ticker: str) -> Quote:
        payload = await self._get("/quote", {"symbol": ticker}, ticker)
        return parse_quote(ticker, payload)

    async def fetch_market_status(self, exchange: str) -> MarketStatus:
        payload = await self._get("/stock/market-status", {"exchange": exchange})
        return parse_market_status(exchange, payload)

    async def fetch_history(self, ticker: str, start: float, end: float) -> List[float]:
        payload = await self._get(
            "/stock/candle",
            {"symbol": ticker, "resolution": "1", "from": int(start), "to": int(end)},
            ticker,
        )
        if not isinstance(payload, dict):
            raise MalformedResponseError("candle payload is not an object", ticker)
        if payload.get("s") == "no_data":
            return []
        closes = payload.get("c")
        if payload.get("s") != "ok" or not isinstance(closes, list):
            raise MalformedResponseError(f"candle status {payload.get('s')!r}", ticker)
        prices = [_finite(c) for c in closes]
        return [p for p in prices if p is not None and p > 0]

    async def aclose(self) -> None:
        await self._client.aclose()


# Liquid symbol whose session state stands in for each exchange
EXCHANGE_REFERENCE_SYMBOLS: Dict[str, str] = {
    "US": "SPY",
    "L": "ISF.L",
    "TO": "XIU.TO",
    "DE": "EXS1.DE",
}

_YF_MARKET_STATES = {
    "REGULAR": "open",
    "PRE": "pre-market",
    "PREPRE": "pre-market",
    "POST": "post-market",
    "POSTPOST": "post-market",
    "CLOSED": "closed",
}


class YFinanceQuoteSource(QuoteSource):
    """Yahoo Finance via yfinance. Blocking calls run in the default executor."""

    name = "yfinance"

    async def _run(self, fn, ticker: Optional[str] = None):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except YFRateLimitError as e:
            raise RateLimitedError(str(e), ticker) from e
        except QuoteSourceError:
            raise
        except Exception as e:
            raise TransientNetworkError(f"yfinance error: {e}", ticker) from e

    async def fetch_quote(self, ticker: str) -> Quote:
        def _fetch() -> Dict[str, Any]:
            info = yf.Ticker(ticker).fast_info
            return {"c": info.last_price, "pc": info.previous_close}

        return parse_quote(ticker, await self._run(_fetch, ticker))

    async def fetch_market_status(self, exchange: str) -> MarketStatus:
        symbol = EXCHANGE_REFERENCE_SYMBOLS.get(exchange)
        if symbol is None:
            raise MalformedResponseError(f"no reference symbol for exchange {exchange}")

        def _fetch() -> Optional[str]:
            return yf.Ticker(symbol).info.get("marketState")

        state = await self._run(_fetch)
        if not isinstance(state, str) or state.upper() not in _YF_MARKET_STATES:
            raise MalformedResponseError(f"unknown market state {state!r} for {exchange}")
        session = _YF_MARKET_STATES[state.upper()]
        return MarketStatus(exchange=exchange, is_open=session == "open", session=session)

    async def fetch_history(self, ticker: str, start: float, end: float) -> List[float]:
        def _fetch() -> List[float]:
            hist = yf.Ticker(ticker).history(
                start=datetime.fromtimestamp(start, tz=timezone.utc),
                end=datetime.fromtimestamp(end, tz=timezone.utc),
                interval="1m",
            )
            if hist.empty:
                return []
            return [float(c) for c in hist["Close"].dropna().tolist()]

        prices = await self._run(_fetch, ticker)
        return [p for p in prices if math.isfinite(p) and p > 0]


def create_quote_source(config: Optional[HeatmapConfig] = None) -> QuoteSource:
    config = config or get_config()
    if config.provider == "yfinance":
        return YFinanceQuoteSource()
    if config.provider == "finnhub":
        return FinnhubQuoteSource.from_config(config)
    raise ValueError(f"unknown quote provider {config.provider!r}")
