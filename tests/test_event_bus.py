"""Tests for the event bus."""
import pytest

from heatmap.core.event_bus import Event, EventBus, EventType


class TestEventBus:
    """Tests for EventBus delivery."""

    @pytest.mark.asyncio
    async def test_delivers_by_type(self):
        bus = EventBus()
        tiles = await bus.subscribe(EventType.TILE_CHANGED)
        stats = await bus.subscribe(EventType.STATS_UPDATED)
        bus.publish_nowait(Event(type=EventType.TILE_CHANGED, data="AAPL"))
        assert tiles.get_nowait().data == "AAPL"
        assert stats.empty()

    @pytest.mark.asyncio
    async def test_slow_subscriber_loses_oldest(self):
        bus = EventBus(maxsize=2)
        queue = await bus.subscribe(EventType.TILE_CHANGED)
        for i in range(3):
            bus.publish_nowait(Event(type=EventType.TILE_CHANGED, data=i))
        assert [queue.get_nowait().data, queue.get_nowait().data] == [1, 2]
        assert bus.dropped == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        queue = await bus.subscribe(EventType.MODE_CHANGED)
        bus.unsubscribe(EventType.MODE_CHANGED, queue)
        bus.publish_nowait(Event(type=EventType.MODE_CHANGED, data=None))
        assert queue.empty()
        assert bus.dropped == 0
