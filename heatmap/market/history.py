"""Bounded rolling price history per instrument."""

from collections import deque
from typing import Deque, Iterable, List, Optional


class HistoryBuffer:
    """Fixed-capacity price ring, oldest first. The oldest sample is evicted on overflow."""

    def __init__(self, capacity: int = 50, seed: Optional[float] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._prices: Deque[float] = deque(maxlen=capacity)
        if seed is not None:
            self._prices.append(seed)

    def append(self, price: float) -> None:
        self._prices.append(price)

    def reset(self, seed: float) -> None:
        """Replace the contents with a single seed sample."""
        self._prices.clear()
        self._prices.append(seed)

    def replace(self, prices: Iterable[float]) -> None:
        """Replace the contents, keeping only the newest ``capacity`` samples."""
        self._prices.clear()
        self._prices.extend(prices)

    def to_list(self) -> List[float]:
        return list(self._prices)

    def trend(self) -> int:
        """Sign of the move across the buffer: 1 up, -1 down, 0 flat or too short."""
        if len(self._prices) < 2:
            return 0
        delta = self._prices[-1] - self._prices[0]
        return (delta > 0) - (delta < 0)

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self):
        return iter(self._prices)
