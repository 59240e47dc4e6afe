"""Dashboard: Rich terminal heatmap, snapshot persistence and CSV export."""
from .live_console import LiveConsole
from .export import SnapshotStore, SnapshotExporter, write_csv

__all__ = ["LiveConsole", "SnapshotStore", "SnapshotExporter", "write_csv"]
