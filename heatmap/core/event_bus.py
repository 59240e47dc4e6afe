"""In-process notifications from the engine to its consumers.

Each subscriber owns a bounded asyncio.Queue. The engine publishes from
synchronous code and never waits on a consumer; a consumer that falls behind
loses its oldest notifications, since a newer tile snapshot supersedes them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from heatmap.core.logger import get_logger

logger = get_logger(__name__)


class EventType(Enum):
    TILE_CHANGED = "tile_changed"            # data: TileSnapshot
    STATS_UPDATED = "stats_updated"          # data: AggregateStats
    MODE_CHANGED = "mode_changed"            # data: Mode
    MARKET_STATUS = "market_status"          # data: MarketStatus
    RATE_LIMITED = "rate_limited"            # data: LimiterStatus
    HISTORY_REFRESHED = "history_refreshed"  # data: ticker


@dataclass
class Event:
    type: EventType
    data: Any
    timestamp: float = field(default_factory=time.time)
    source: str = ""


class EventBus:
    def __init__(self, maxsize: int = 1000):
        self._queues: Dict[EventType, List[asyncio.Queue]] = {}
        self._maxsize = maxsize
        self.dropped = 0

    async def subscribe(self, event_type: EventType) -> asyncio.Queue:
        """New queue receiving every later event of ``event_type``."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._queues.setdefault(event_type, []).append(queue)
        return queue

    def unsubscribe(self, event_type: EventType, queue: asyncio.Queue) -> None:
        queues = self._queues.get(event_type, [])
        if queue in queues:
            queues.remove(queue)

    def publish_nowait(self, event: Event) -> None:
        for queue in self._queues.get(event.type, ()):
            if queue.full():
                queue.get_nowait()
                self.dropped += 1
                if self.dropped % self._maxsize == 1:
                    logger.debug("slow_subscriber_dropping", type=event.type.value, dropped=self.dropped)
            queue.put_nowait(event)


# Global singleton
_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
