"""Exchange status cache and per-tile session status resolution."""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from heatmap.market.quote_source import MarketStatus
from heatmap.market.rate_limiter import RateLimiter
from heatmap.state import Mode, SessionStatus


@dataclass(frozen=True)
class CachedStatus:
    status: MarketStatus
    fetched_at: float


class MarketStatusCache:
    """Last known status per exchange, considered fresh for ``ttl_s`` seconds."""

    def __init__(self, ttl_s: float = 60.0, clock: Callable[[], float] = time.time):
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: Dict[str, CachedStatus] = {}

    def put(self, status: MarketStatus, now: Optional[float] = None) -> Optional[MarketStatus]:
        """Store a status; returns the previous one."""
        now = self._clock() if now is None else now
        previous = self._entries.get(status.exchange)
        self._entries[status.exchange] = CachedStatus(status=status, fetched_at=now)
        return previous.status if previous else None

    def get(self, exchange: str, now: Optional[float] = None) -> Optional[MarketStatus]:
        """Fresh status for ``exchange``, or None when missing or stale."""
        entry = self._entries.get(exchange)
        if entry is None:
            return None
        now = self._clock() if now is None else now
        if now - entry.fetched_at > self.ttl_s:
            return None
        return entry.status


def status_from_market(status: Optional[MarketStatus]) -> SessionStatus:
    if status is None:
        return SessionStatus.CLOSED
    if status.is_open:
        return SessionStatus.OPEN
    session = status.session.lower()
    if "pre" in session:
        return SessionStatus.PRE
    if "post" in session:
        return SessionStatus.POST
    return SessionStatus.CLOSED


class SessionStatusResolver:
    """Maps mode, limiter state and exchange status into a tile's session status.

    Priority: simulation is always OPEN; limiter backoff or an in-flight quote is
    STANDBY; a tile not sourced live is CLOSED; otherwise the cached exchange
    status decides, with a missing or stale entry reading as CLOSED.
    """

    def __init__(
        self,
        cache: MarketStatusCache,
        limiter: RateLimiter,
        exchange_for: Callable[[str], str],
    ):
        self.cache = cache
        self.limiter = limiter
        self.exchange_for = exchange_for

    def resolve(
        self,
        ticker: str,
        is_live: bool,
        mode: Mode,
        in_flight: bool = False,
        now: Optional[float] = None,
    ) -> SessionStatus:
        if mode is Mode.SIMULATION:
            return SessionStatus.OPEN
        if in_flight or self.limiter.in_backoff(now):
            return SessionStatus.STANDBY
        if not is_live:
            return SessionStatus.CLOSED
        return status_from_market(self.cache.get(self.exchange_for(ticker), now))
