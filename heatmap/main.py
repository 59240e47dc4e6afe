"""
Market Heatmap Engine: Entry Point
==================================
Run with:  python -m heatmap.main

Keeps one tile per instrument moving with the random-walk simulation, or with
polled live quotes when HEATMAP_MODE=live. Renders the Rich terminal heatmap
and saves a state snapshot every minute and on shutdown.
"""

import asyncio
from typing import Optional

from heatmap.core.config import HeatmapConfig, get_config
from heatmap.core.event_bus import get_event_bus
from heatmap.core.logger import get_logger, setup_logging
from heatmap.core.stream_manager import TaskManager, setup_signal_handlers
from heatmap.dashboard.export import SnapshotExporter, SnapshotStore
from heatmap.dashboard.live_console import LiveConsole
from heatmap.engine.reconciliation import ReconciliationEngine
from heatmap.market.catalog import InstrumentCatalog
from heatmap.market.quote_source import create_quote_source
from heatmap.state import Mode

logger = get_logger(__name__)


def build_engine(config: Optional[HeatmapConfig] = None) -> ReconciliationEngine:
    """Catalog, quote source and engine, seeded from a recent snapshot when one exists."""
    config = config or get_config()
    catalog = InstrumentCatalog.default(include_simulation_assets=config.include_simulation_assets)
    engine = ReconciliationEngine(catalog, source=create_quote_source(config), config=config, bus=get_event_bus())
    saved = SnapshotStore(config.snapshot_path, max_age_s=config.snapshot_max_age_s).load()
    if saved:
        engine.restore(saved)
    return engine


def start_engine_tasks(manager: TaskManager, engine: ReconciliationEngine) -> None:
    manager.register("simulation_loop", engine.run_simulation_loop)
    manager.register("live_poll_loop", engine.run_live_loop)
    manager.register("market_status_loop", engine.run_market_status_loop)


async def main() -> None:
    config = get_config()
    setup_logging(config.log_level)
    bus = get_event_bus()
    manager = TaskManager()
    engine = build_engine(config)
    store = SnapshotStore(config.snapshot_path, max_age_s=config.snapshot_max_age_s)
    exporter = SnapshotExporter(engine, store, config)
    console = LiveConsole(engine, bus, refresh_per_second=config.console_refresh_per_second)

    logger.info("heatmap_starting", instruments=len(engine.catalog), provider=config.provider)

    start_engine_tasks(manager, engine)
    manager.register("autosave", exporter.run)
    manager.register("dashboard", console.run)
    setup_signal_handlers(manager, asyncio.get_running_loop())

    if config.start_mode.lower() == Mode.LIVE.value:
        await engine.set_mode(Mode.LIVE)

    try:
        await manager.wait_all()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
        await manager.stop_all()
    finally:
        await engine.aclose()
        logger.info("heatmap_stopped")


if __name__ == "__main__":
    asyncio.run(main())
