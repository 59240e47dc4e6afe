"""Tests for snapshot persistence and CSV export."""
import asyncio
import csv
import json

import pytest

from heatmap.dashboard.export import CSV_HEADERS, SnapshotExporter, SnapshotStore, export_filename, write_csv
from heatmap.engine.stats import ViewFilter
from heatmap.state import Scenario

T0 = 1_700_000_000.0


class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_round_trip(self, engine, tmp_path):
        engine.force_scenario(Scenario.CRASH)
        store = SnapshotStore(tmp_path / "state.json", max_age_s=3600)
        assert store.save(engine.get_snapshots(), now=T0)
        entries = store.load(now=T0 + 3599)
        assert [e["ticker"] for e in entries] == ["AAPL", "MSFT", "XOM", "SIMX"]
        for entry, snap in zip(entries, engine.get_snapshots()):
            assert entry["price"] == snap.price
            assert entry["base_price"] == snap.base_price
            assert entry["change_pct"] == snap.change_pct

    def test_format(self, engine, tmp_path):
        path = tmp_path / "state.json"
        SnapshotStore(path).save(engine.get_snapshots(), now=T0)
        payload = json.loads(path.read_text())
        assert payload["timestamp"] == T0
        assert set(payload["tiles"][0]) == {"ticker", "price", "base_price", "change_pct"}

    def test_stale_snapshot_ignored(self, engine, tmp_path):
        store = SnapshotStore(tmp_path / "state.json", max_age_s=3600)
        store.save(engine.get_snapshots(), now=T0)
        assert store.load(now=T0 + 3601) is None

    def test_missing_file(self, tmp_path):
        assert SnapshotStore(tmp_path / "nope.json").load() is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert SnapshotStore(path).load() is None
        path.write_text(json.dumps({"timestamp": "yesterday", "tiles": []}))
        assert SnapshotStore(path).load() is None

    def test_save_failure_is_swallowed(self, engine, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SnapshotStore(blocker / "state.json")
        assert store.save(engine.get_snapshots()) is False


class TestCsvExport:
    """Tests for CSV export."""

    def test_write_csv(self, engine, tmp_path):
        engine.force_scenario(Scenario.RESET)
        path = write_csv(engine, tmp_path / "out" / "grid.csv")
        with open(path, newline="") as f:
            rows = list(csv.reader(f))
        assert rows[0] == CSV_HEADERS
        assert rows[1] == ["AAPL", "Apple Inc.", "Technology", "100.00", "0.00"]
        assert len(rows) == 5

    def test_only_visible_rows(self, engine, tmp_path):
        engine.set_view(ViewFilter(search="energy"))
        with open(write_csv(engine, tmp_path / "grid.csv"), newline="") as f:
            rows = list(csv.reader(f))
        assert [r[0] for r in rows[1:]] == ["XOM"]

    def test_filename(self):
        assert export_filename().startswith("market-heatmap-")
        assert export_filename().endswith(".csv")


class TestSnapshotExporter:
    """Tests for the autosave loop."""

    @pytest.mark.asyncio
    async def test_saves_on_cancel(self, engine, config, tmp_path):
        store = SnapshotStore(tmp_path / "auto.json")
        exporter = SnapshotExporter(engine, store, config)
        task = asyncio.ensure_future(exporter.run())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.load() is not None
