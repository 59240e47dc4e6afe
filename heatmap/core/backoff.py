"""Exponential retry delay shared by reconnecting loops."""


class ReconnectPolicy:
    """Exponential delay: ``min(max_delay, initial_delay * multiplier ** attempt)``."""

    def __init__(self, initial_delay: float = 1.0, max_delay: float = 30.0, multiplier: float = 2.0):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.attempt = 0

    def current_delay(self) -> float:
        try:
            delay = self.initial_delay * (self.multiplier ** self.attempt)
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, delay)

    def next_delay(self) -> float:
        """Delay before the next retry; advances the attempt counter."""
        delay = self.current_delay()
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0
