"""Shared REST call budget, 429 cool-down and in-flight cap.

One ``RateLimiter`` guards every call a quote source makes, for every instrument.
Its counters are only touched from synchronous code running on the event loop,
so concurrent poll tasks never interleave inside an update.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from heatmap.core.logger import get_logger

logger = get_logger(__name__)


class LimiterState(Enum):
    IDLE = "idle"
    CALLING = "calling"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class LimiterStatus:
    state: LimiterState
    calls_in_window: int
    max_calls: int
    backoff_remaining_s: float
    in_flight: int


class RateLimiter:
    """Windowed call budget with a fixed cool-down after it is exceeded.

    The window starts with the first call and resets ``window_s`` later. The call
    that would exceed ``max_calls`` is denied and puts the limiter in BACKOFF, as
    does a provider-side rate-limit response.
    """

    def __init__(
        self,
        max_calls: int = 60,
        window_s: float = 60.0,
        cooldown_s: float = 60.0,
        max_in_flight: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.window_s = window_s
        self.cooldown_s = cooldown_s
        self.max_in_flight = max_in_flight
        self._clock = clock

        self._calls_in_window = 0
        self._window_reset_at: Optional[float] = None
        self._backoff_until = 0.0
        self._in_flight = 0
        self._slots: Optional[asyncio.Semaphore] = None

    # ── state ─────────────────────────────────────────────────────────────

    def state(self, now: Optional[float] = None) -> LimiterState:
        now = self._clock() if now is None else now
        if now < self._backoff_until:
            return LimiterState.BACKOFF
        if self._in_flight > 0:
            return LimiterState.CALLING
        return LimiterState.IDLE

    def in_backoff(self, now: Optional[float] = None) -> bool:
        return self.state(now) is LimiterState.BACKOFF

    def backoff_remaining(self, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        return max(0.0, self._backoff_until - now)

    def status(self, now: Optional[float] = None) -> LimiterStatus:
        now = self._clock() if now is None else now
        self._roll_window(now)
        return LimiterStatus(
            state=self.state(now),
            calls_in_window=self._calls_in_window,
            max_calls=self.max_calls,
            backoff_remaining_s=round(self.backoff_remaining(now), 3),
            in_flight=self._in_flight,
        )

    # ── budget ────────────────────────────────────────────────────────────

    def _roll_window(self, now: float) -> None:
        if self._window_reset_at is None or now >= self._window_reset_at:
            self._calls_in_window = 0
            self._window_reset_at = now + self.window_s

    def try_acquire(self, now: Optional[float] = None) -> bool:
        """Spend one call from the budget. Returns False when the caller must skip."""
        now = self._clock() if now is None else now
        if now < self._backoff_until:
            return False
        self._roll_window(now)
        if self._calls_in_window >= self.max_calls:
            self._enter_backoff(now, reason="window_cap")
            return False
        self._calls_in_window += 1
        return True

    def record_rate_limited(self, now: Optional[float] = None) -> None:
        """The provider answered with a rate-limit response."""
        now = self._clock() if now is None else now
        self._enter_backoff(now, reason="provider_429")

    def _enter_backoff(self, now: float, reason: str) -> None:
        already = now < self._backoff_until
        self._backoff_until = max(self._backoff_until, now + self.cooldown_s)
        if not already:
            logger.warning(
                "rate_limit_backoff",
                reason=reason,
                cooldown_s=self.cooldown_s,
                calls_in_window=self._calls_in_window,
            )

    # ── concurrency ───────────────────────────────────────────────────────

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one of ``max_in_flight`` concurrent call slots."""
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.max_in_flight)
        self._in_flight += 1
        try:
            async with self._slots:
                yield
        finally:
            self._in_flight -= 1

