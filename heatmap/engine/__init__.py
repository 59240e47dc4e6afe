"""Reconciliation engine and aggregate statistics."""
from .reconciliation import ReconciliationEngine, EngineContext
from .stats import AggregateStats, ViewFilter, ViewCategory, SortKey, compute_stats

__all__ = [
    "ReconciliationEngine", "EngineContext",
    "AggregateStats", "ViewFilter", "ViewCategory", "SortKey", "compute_stats",
]
