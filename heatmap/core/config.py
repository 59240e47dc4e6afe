"""Heatmap engine configuration."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class HeatmapConfig:
    # Simulation scheduler
    tick_interval_ms: int = 1000
    min_tick_interval_ms: int = 250
    max_tick_interval_ms: int = 5000
    volatility_multiplier: float = 1.0
    max_volatility_multiplier: float = 7.5
    random_seed: Optional[int] = None

    # Poll intervals (seconds)
    live_refresh_s: float = 12.0
    market_ping_s: float = 60.0
    market_status_ttl_s: float = 60.0
    autosave_interval_s: float = 60.0

    # Rate limiting for REST endpoints
    max_calls_per_window: int = 60
    rate_window_s: float = 60.0
    backoff_cooldown_s: float = 60.0
    max_in_flight: int = 5

    # Reconnect strategy for long-running loops
    reconnect_initial_delay_s: float = 1.0
    reconnect_max_delay_s: float = 30.0
    reconnect_multiplier: float = 2.0

    # Tile model
    history_length: int = 50
    history_backfill_s: int = 6 * 60 * 60
    strong_gain: float = 3.0
    mild_gain: float = 0.5
    mild_loss: float = -0.5
    strong_loss: float = -3.0
    # Max disagreement (percentage points) tolerated between provider percent and price ratio
    change_tolerance_pct: float = 0.05

    # Quote provider
    provider: str = field(default_factory=lambda: os.getenv("HEATMAP_PROVIDER", "finnhub"))
    finnhub_api_key: str = field(default_factory=lambda: os.getenv("FINNHUB_API_KEY", ""))
    finnhub_rest_base: str = "https://finnhub.io/api/v1"
    proxy_base: Optional[str] = field(default_factory=lambda: os.getenv("HEATMAP_PROXY_URL"))
    request_timeout_s: float = 10.0

    # "simulation" or "live" at start-up
    start_mode: str = field(default_factory=lambda: os.getenv("HEATMAP_MODE", "simulation"))

    # Tickers that may be sourced live; None means the live-capable asset list
    live_tickers: Optional[List[str]] = None
    include_simulation_assets: bool = True

    # Persistence
    snapshot_path: str = field(
        default_factory=lambda: os.getenv("HEATMAP_SNAPSHOT_PATH", "heatmap/data/state.json")
    )
    snapshot_max_age_s: float = 3600.0

    # Console
    console_refresh_per_second: int = 4
    log_level: str = field(default_factory=lambda: os.getenv("HEATMAP_LOG_LEVEL", "INFO"))

    @property
    def rest_base(self) -> str:
        """REST base URL; a proxy holds the API key server-side."""
        if self.proxy_base:
            return self.proxy_base.rstrip("/") + "/api"
        return self.finnhub_rest_base


# Global singleton
_config: HeatmapConfig | None = None


def get_config() -> HeatmapConfig:
    global _config
    if _config is None:
        _config = HeatmapConfig()
    return _config
