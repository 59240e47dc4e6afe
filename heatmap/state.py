"""Per-instrument tile state shared by the engine and its consumers."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Mode(Enum):
    SIMULATION = "simulation"
    LIVE = "live"


class Classification(Enum):
    STRONG_GAIN = "strong_gain"
    GAIN = "gain"
    NEUTRAL = "neutral"
    LOSS = "loss"
    STRONG_LOSS = "strong_loss"


class SessionStatus(Enum):
    OPEN = "open"
    PRE = "pre"
    POST = "post"
    CLOSED = "closed"
    STANDBY = "standby"


class Scenario(Enum):
    CRASH = "crash"
    BULL_RUN = "bull_run"
    RESET = "reset"


@dataclass(frozen=True)
class Simulated:
    """Tile driven by the random-walk generator this tick."""


@dataclass(frozen=True)
class Live:
    """Tile driven by the quote feed this tick."""
    exchange: str


TileSource = Union[Simulated, Live]


@dataclass(frozen=True)
class Thresholds:
    strong_gain: float = 3.0
    mild_gain: float = 0.5
    mild_loss: float = -0.5
    strong_loss: float = -3.0

    def classify(self, change_pct: float) -> Classification:
        if change_pct > self.strong_gain:
            return Classification.STRONG_GAIN
        if change_pct > self.mild_gain:
            return Classification.GAIN
        if change_pct < self.strong_loss:
            return Classification.STRONG_LOSS
        if change_pct < self.mild_loss:
            return Classification.LOSS
        return Classification.NEUTRAL


@dataclass
class TileState:
    """Mutable price state for one instrument. Owned by the engine."""
    ticker: str
    price: float
    base_price: float
    change_pct: float = 0.0
    is_live: bool = False
    classification: Classification = Classification.NEUTRAL
    session_status: SessionStatus = SessionStatus.OPEN
    high: Optional[float] = None
    low: Optional[float] = None
    updated_at: float = field(default_factory=time.time)

    def apply_simulated(self, change_pct: float, now: float) -> None:
        """Write a simulated change; price always derives from the base price."""
        self.change_pct = change_pct
        self.price = self.base_price * (1 + change_pct / 100)
        self._touch(now)

    def apply_live(self, price: float, base_price: float, change_pct: float, now: float) -> None:
        self.price = price
        self.base_price = base_price
        self.change_pct = change_pct
        self._touch(now)

    def _touch(self, now: float) -> None:
        self.high = self.price if self.high is None else max(self.high, self.price)
        self.low = self.price if self.low is None else min(self.low, self.price)
        self.updated_at = now

    def snapshot(self) -> "TileSnapshot":
        return TileSnapshot(
            ticker=self.ticker,
            price=self.price,
            base_price=self.base_price,
            change_pct=self.change_pct,
            is_live=self.is_live,
            classification=self.classification,
            session_status=self.session_status,
            high=self.high,
            low=self.low,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class TileSnapshot:
    """Read-only copy of a tile handed to renderers."""
    ticker: str
    price: float
    base_price: float
    change_pct: float
    is_live: bool
    classification: Classification
    session_status: SessionStatus
    high: Optional[float]
    low: Optional[float]
    updated_at: float

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "price": self.price,
            "base_price": self.base_price,
            "change_pct": self.change_pct,
            "is_live": self.is_live,
            "classification": self.classification.value,
            "session_status": self.session_status.value,
            "high": self.high,
            "low": self.low,
            "updated_at": self.updated_at,
        }
