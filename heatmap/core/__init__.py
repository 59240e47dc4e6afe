"""Core infrastructure: event bus, task manager, config, logger."""
from .event_bus import EventBus, EventType, Event, get_event_bus
from .stream_manager import TaskManager, setup_signal_handlers
from .config import HeatmapConfig, get_config
from .logger import setup_logging, get_logger

__all__ = [
    "EventBus", "EventType", "Event", "get_event_bus",
    "TaskManager", "setup_signal_handlers",
    "HeatmapConfig", "get_config",
    "setup_logging", "get_logger",
]
