"""Snapshot persistence, autosave loop and CSV export of the grid."""

import asyncio
import csv
import json
import os
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from heatmap.core.config import HeatmapConfig, get_config
from heatmap.core.logger import get_logger
from heatmap.state import TileSnapshot

logger = get_logger(__name__)

CSV_HEADERS = ["Ticker", "Name", "Sector", "Price", "Change %"]


def _tile_entry(snap: TileSnapshot) -> dict:
    return {
        "ticker": snap.ticker,
        "price": snap.price,
        "base_price": snap.base_price,
        "change_pct": snap.change_pct,
    }


class SnapshotStore:
    """Best-effort JSON snapshot of every tile's price, base price and change.

    Save and load failures are logged at debug level and otherwise ignored; a
    snapshot older than ``max_age_s`` reads as absent.
    """

    def __init__(self, path, max_age_s: float = 3600.0, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.max_age_s = max_age_s
        self._clock = clock

    def save(self, tiles: Iterable[TileSnapshot], now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        payload = {"timestamp": now, "tiles": [_tile_entry(t) for t in tiles]}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(payload, f)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.debug("snapshot_save_failed", path=str(self.path), error=str(e))
            return False
        logger.debug("snapshot_saved", path=str(self.path), tiles=len(payload["tiles"]))
        return True

    def load(self, now: Optional[float] = None) -> Optional[List[dict]]:
        """Saved tile entries, or None when missing, unreadable or stale."""
        try:
            with open(self.path) as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug("snapshot_load_failed", path=str(self.path), error=str(e))
            return None
        if not isinstance(payload, dict):
            return None
        saved_at = payload.get("timestamp")
        tiles = payload.get("tiles")
        if not isinstance(saved_at, (int, float)) or not isinstance(tiles, list):
            logger.debug("snapshot_malformed", path=str(self.path))
            return None
        now = self._clock() if now is None else now
        if now - saved_at > self.max_age_s:
            logger.debug("snapshot_stale", age_s=round(now - saved_at, 1))
            return None
        return [t for t in tiles if isinstance(t, dict)]


def write_csv(engine, path, visible_only: bool = True) -> Path:
    """Write the (visible) grid as ``Ticker,Name,Sector,Price,Change %``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADERS)
        for row in csv_rows(engine, visible_only):
            writer.writerow(row)
    logger.info("csv_exported", path=str(path))
    return path


def csv_rows(engine, visible_only: bool = True) -> List[list]:
    rows = []
    for snap in engine.get_snapshots(visible_only=visible_only):
        inst = engine.catalog[snap.ticker]
        rows.append([inst.ticker, inst.name, inst.sector, f"{snap.price:.2f}", f"{snap.change_pct:.2f}"])
    return rows


def export_filename(now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    return "market-heatmap-" + time.strftime("%Y-%m-%d", time.localtime(now)) + ".csv"


class SnapshotExporter:
    """Saves the engine's tiles every ``autosave_interval_s`` and once more on shutdown."""

    def __init__(self, engine, store: SnapshotStore, config: Optional[HeatmapConfig] = None):
        self._engine = engine
        self._store = store
        self._config = config or get_config()

    def save_now(self) -> bool:
        return self._store.save(self._engine.get_snapshots())

    async def run(self) -> None:
        interval = self._config.autosave_interval_s
        logger.info("snapshot_autosave_started", interval=interval, path=str(self._store.path))
        loop = asyncio.get_running_loop()
        try:
            while True:
                await asyncio.sleep(interval)
                await loop.run_in_executor(None, self._store.save, self._engine.get_snapshots())
        except asyncio.CancelledError:
            self.save_now()
            logger.info("snapshot_autosave_stopped")
            raise
