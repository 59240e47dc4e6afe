"""Synthetic price motion: momentum + noise + mean reversion."""

import math
from typing import Callable, Optional

import numpy as np

NoiseSource = Callable[[], float]


def uniform_noise(seed: Optional[int] = None) -> NoiseSource:
    """Uniform(-1, 1) draws from a numpy Generator; seeded for reproducible runs."""
    rng = np.random.default_rng(seed)

    def _draw() -> float:
        return float(rng.uniform(-1.0, 1.0))

    return _draw


class SimulationGenerator:
    """Produces the next percent change for one instrument per tick.

    The change is damped by ``damping`` every step so it reverts toward zero, and
    clamped to ``[-max_change, max_change]``. Callers derive price from the base
    price and the returned change, never from the previous price.
    """

    def __init__(
        self,
        noise: Optional[NoiseSource] = None,
        base_volatility: float = 0.5,
        amplitude: float = 0.3,
        momentum_scale: float = 0.3,
        damping: float = 0.98,
        max_change: float = 10.0,
        seed: Optional[int] = None,
    ):
        self._noise = noise or uniform_noise(seed)
        self.base_volatility = base_volatility
        self.amplitude = amplitude
        self.momentum_scale = momentum_scale
        self.damping = damping
        self.max_change = max_change

    def momentum(self, instrument_index: int, now_ms: float) -> float:
        return math.sin(now_ms / 10000 + instrument_index) * self.momentum_scale

    def volatility(self, now_ms: float, volatility_multiplier: float) -> float:
        return (self.base_volatility + math.sin(now_ms / 5000) * self.amplitude) * volatility_multiplier

    def step(
        self,
        old_change_pct: float,
        instrument_index: int,
        now_ms: float,
        volatility_multiplier: float,
    ) -> float:
        delta = (self.momentum(instrument_index, now_ms) + self._noise()) * self.volatility(
            now_ms, volatility_multiplier
        )
        damped = (old_change_pct + delta) * self.damping
        return max(-self.max_change, min(self.max_change, damped))
