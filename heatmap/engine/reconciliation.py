"""Price-state reconciliation engine.

Owns one ``TileState`` and one ``HistoryBuffer`` per instrument and merges two
competing sources into them: the random-walk ``SimulationGenerator`` and polled
live quotes. Live requests are fire-and-forget tasks tagged with a batch
generation and a per-request sequence number; a response is applied only if its
generation is current and its sequence is newer than the last one applied for
that ticker.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

import numpy as np

from heatmap.core.backoff import ReconnectPolicy
from heatmap.core.config import HeatmapConfig, get_config
from heatmap.core.event_bus import Event, EventBus, EventType, get_event_bus
from heatmap.core.logger import get_logger
from heatmap.engine.stats import EMPTY_STATS, AggregateStats, ViewFilter, compute_stats
from heatmap.market.catalog import Instrument, InstrumentCatalog, default_live_tickers
from heatmap.market.history import HistoryBuffer
from heatmap.market.quote_source import (
    Quote,
    QuoteCancelledError,
    QuoteSource,
    QuoteSourceError,
    RateLimitedError,
    TransientNetworkError,
)
from heatmap.market.rate_limiter import LimiterStatus, RateLimiter
from heatmap.market.session import MarketStatusCache, SessionStatusResolver
from heatmap.market.simulation import SimulationGenerator
from heatmap.state import (
    Live,
    Mode,
    Scenario,
    Simulated,
    Thresholds,
    TileSnapshot,
    TileSource,
    TileState,
)

logger = get_logger(__name__)


@dataclass
class EngineContext:
    """All mutable engine-wide state: mode, knobs, limiter, market cache, reconnect policy."""
    limiter: RateLimiter
    market_cache: MarketStatusCache
    reconnect: ReconnectPolicy
    mode: Mode = Mode.SIMULATION
    tick_interval_ms: int = 1000
    volatility_multiplier: float = 1.0
    paused: bool = False

    @classmethod
    def from_config(cls, config: HeatmapConfig, clock: Callable[[], float] = time.time) -> "EngineContext":
        return cls(
            limiter=RateLimiter(
                max_calls=config.max_calls_per_window,
                window_s=config.rate_window_s,
                cooldown_s=config.backoff_cooldown_s,
                max_in_flight=config.max_in_flight,
                clock=clock,
            ),
            market_cache=MarketStatusCache(ttl_s=config.market_status_ttl_s, clock=clock),
            reconnect=ReconnectPolicy(
                initial_delay=config.reconnect_initial_delay_s,
                max_delay=config.reconnect_max_delay_s,
                multiplier=config.reconnect_multiplier,
            ),
            tick_interval_ms=config.tick_interval_ms,
            volatility_multiplier=config.volatility_multiplier,
        )


@dataclass
class _BatchOutcome:
    generation: int
    issued: int = 0
    succeeded: int = 0
    transient_failures: int = 0

    @property
    def all_failed(self) -> bool:
        return self.issued > 0 and self.succeeded == 0 and self.transient_failures == self.issued


@dataclass
class _Request:
    ticker: str
    generation: int
    seq: int
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class ReconciliationEngine:
    def __init__(
        self,
        catalog: InstrumentCatalog,
        source: Optional[QuoteSource] = None,
        config: Optional[HeatmapConfig] = None,
        context: Optional[EngineContext] = None,
        generator: Optional[SimulationGenerator] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        live_tickers: Optional[Iterable[str]] = None,
    ):
        self.catalog = catalog
        self.config = config or get_config()
        self.source = source
        self._clock = clock
        self.context = context or EngineContext.from_config(self.config, clock)
        self.generator = generator or SimulationGenerator(seed=self.config.random_seed)
        self.bus = bus or get_event_bus()
        self.thresholds = Thresholds(
            strong_gain=self.config.strong_gain,
            mild_gain=self.config.mild_gain,
            mild_loss=self.config.mild_loss,
            strong_loss=self.config.strong_loss,
        )
        self.resolver = SessionStatusResolver(
            self.context.market_cache, self.context.limiter, lambda t: self.catalog[t].exchange
        )
        self._rng = np.random.default_rng(self.config.random_seed)

        if live_tickers is None:
            live_tickers = self.config.live_tickers or default_live_tickers()
        self.live_eligible: Set[str] = {t for t in live_tickers if t in catalog}

        now = clock()
        self._tiles: Dict[str, TileState] = {}
        self._history: Dict[str, HistoryBuffer] = {}
        for inst in catalog:
            tile = TileState(ticker=inst.ticker, price=inst.initial_price, base_price=inst.initial_price, updated_at=now)
            tile.classification = self.thresholds.classify(tile.change_pct)
            self._tiles[inst.ticker] = tile
            self._history[inst.ticker] = HistoryBuffer(self.config.history_length, seed=inst.initial_price)

        self._generation = 0
        self._seq = 0
        self._applied_seq: Dict[str, int] = {}
        self._in_flight: Dict[str, _Request] = {}
        self._needs_seed: Set[str] = set()
        self._batch = _BatchOutcome(generation=0)

        self._view = ViewFilter()
        self._stats: AggregateStats = EMPTY_STATS
        self._mode_lock = asyncio.Lock()
        self._sim_active = asyncio.Event()
        self._live_active = asyncio.Event()
        self._interval_changed = asyncio.Event()
        self._sim_active.set()
        self._refresh_stats(publish=False)

    # ── reads ─────────────────────────────────────────────────────────────

    @property
    def mode(self) -> Mode:
        return self.context.mode

    @property
    def generation(self) -> int:
        return self._generation

    def get_snapshot(self, ticker: str) -> TileSnapshot:
        return self._tiles[ticker].snapshot()

    def get_snapshots(self, visible_only: bool = False) -> List[TileSnapshot]:
        if visible_only:
            return [tile.snapshot() for _, tile in self._visible_pairs()]
        return [tile.snapshot() for tile in self._tiles.values()]

    def get_history(self, ticker: str) -> List[float]:
        return self._history[ticker].to_list()

    def get_trend(self, ticker: str) -> int:
        return self._history[ticker].trend()

    def get_aggregate_stats(self) -> AggregateStats:
        return self._stats

    def get_view(self) -> ViewFilter:
        return self._view

    def limiter_status(self) -> LimiterStatus:
        return self.context.limiter.status(self._clock())

    def is_in_flight(self, ticker: str) -> bool:
        return ticker in self._in_flight

    def source_for(self, ticker: str) -> TileSource:
        tile = self._tiles[ticker]
        if self.context.mode is Mode.LIVE and tile.is_live:
            return Live(exchange=self.catalog[ticker].exchange)
        return Simulated()

    # ── persistence ───────────────────────────────────────────────────────

    def restore(self, entries: Iterable[dict]) -> int:
        """Seed tiles from saved ``{ticker, price, base_price, change_pct}`` entries."""
        now = self._clock()
        restored = 0
        for entry in entries:
            tile = self._tiles.get(entry.get("ticker")) if isinstance(entry, dict) else None
            if tile is None:
                continue
            price, base, change = entry.get("price"), entry.get("base_price"), entry.get("change_pct")
            values = (price, base, change)
            if not all(isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v) for v in values):
                continue
            if price <= 0 or base <= 0:
                continue
            tile.price, tile.base_price, tile.change_pct = float(price), float(base), float(change)
            tile.high = tile.low = tile.price
            tile.updated_at = now
            tile.classification = self.thresholds.classify(tile.change_pct)
            self._history[tile.ticker].reset(tile.price)
            restored += 1
        if restored:
            self._refresh_stats()
            logger.info("tiles_restored", count=restored)
        return restored

    # ── simulation ────────────────────────────────────────────────────────

    def tick(self, now: Optional[float] = None) -> int:
        """One simulation scheduler tick over every simulated tile, in catalog order."""
        now = self._clock() if now is None else now
        updated = 0
        for index, inst in enumerate(self.catalog):
            if isinstance(self.source_for(inst.ticker), Simulated):
                self._simulate(inst, index, now)
                updated += 1
        self._refresh_stats()
        return updated

    def _simulate(self, inst: Instrument, index: int, now: float) -> None:
        tile = self._tiles[inst.ticker]
        change = self.generator.step(tile.change_pct, index, now * 1000, self.context.volatility_multiplier)
        tile.apply_simulated(change, now)
        self._history[inst.ticker].append(tile.price)
        self._finish_write(tile, now)

    def _finish_write(self, tile: TileState, now: float) -> None:
        tile.classification = self.thresholds.classify(tile.change_pct)
        tile.session_status = self._resolve_status(tile, now)
        self.bus.publish_nowait(Event(type=EventType.TILE_CHANGED, data=tile.snapshot(), source="engine"))

    def _resolve_status(self, tile: TileState, now: float):
        return self.resolver.resolve(
            tile.ticker, tile.is_live, self.context.mode, tile.ticker in self._in_flight, now
        )

    def refresh_statuses(self, now: Optional[float] = None) -> int:
        """Recompute every tile's session status; notifies only tiles whose status moved."""
        now = self._clock() if now is None else now
        changed = 0
        for tile in self._tiles.values():
            status = self._resolve_status(tile, now)
            if status is not tile.session_status:
                tile.session_status = status
                self.bus.publish_nowait(Event(type=EventType.TILE_CHANGED, data=tile.snapshot(), source="engine"))
                changed += 1
        return changed

    def _visible_pairs(self):
        pairs = ((inst, self._tiles[inst.ticker]) for inst in self.catalog)
        return self._view.apply(pairs, self.thresholds)

    def _refresh_stats(self, publish: bool = True) -> AggregateStats:
        self._stats = compute_stats([tile for _, tile in self._visible_pairs()], self.thresholds)
        if publish:
            self.bus.publish_nowait(Event(type=EventType.STATS_UPDATED, data=self._stats, source="engine"))
        return self._stats

    # ── live polling ──────────────────────────────────────────────────────

    def _start_generation(self) -> int:
        """Supersede the current batch: bump the generation and cancel its in-flight calls."""
        self._generation += 1
        stale = list(self._in_flight.values())
        self._in_flight.clear()
        for request in stale:
            if request.task is not None and not request.task.done():
                request.task.cancel()
        if stale:
            logger.debug("batch_superseded", generation=self._generation, cancelled=len(stale))
        self._batch = _BatchOutcome(generation=self._generation)
        return self._generation

    def poll_live(self, now: Optional[float] = None) -> int:
        """Start a live batch. Returns the number of quote requests issued.

        Eligible tiles get a fire-and-forget quote request when the limiter allows
        it; every other tile, and every demoted tile being probed, takes a
        simulation step so the grid keeps moving.
        """
        if self.context.mode is not Mode.LIVE:
            return 0
        now = self._clock() if now is None else now
        generation = self._start_generation()
        limiter = self.context.limiter
        for index, inst in enumerate(self.catalog):
            tile = self._tiles[inst.ticker]
            if self.source is not None and inst.ticker in self.live_eligible and limiter.try_acquire(now):
                self._issue(inst.ticker, generation, now)
                if not tile.is_live:
                    self._simulate(inst, index, now)
            else:
                self._simulate(inst, index, now)
        self._refresh_stats()
        if limiter.in_backoff(now):
            self.refresh_statuses(now)
        logger.debug("live_batch_started", generation=generation, issued=self._batch.issued)
        return self._batch.issued

    def _issue(self, ticker: str, generation: int, now: float) -> _Request:
        self._seq += 1
        request = _Request(ticker=ticker, generation=generation, seq=self._seq)
        self._in_flight[ticker] = request
        request.task = asyncio.ensure_future(self._fetch_and_apply(request))
        request.task.add_done_callback(self._on_request_done)
        self._batch.issued += 1
        tile = self._tiles[ticker]
        tile.session_status = self._resolve_status(tile, now)
        return request

    def _release(self, request: _Request) -> None:
        if self._in_flight.get(request.ticker) is request:
            del self._in_flight[request.ticker]

    def _on_request_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("quote_task_failed", error=str(error), exc_info=error)

    async def _fetch_and_apply(self, request: _Request) -> None:
        limiter = self.context.limiter
        try:
            async with limiter.slot():
                if request.generation != self._generation:
                    raise QuoteCancelledError("batch superseded before sending", request.ticker)
                quote = await self.source.fetch_quote(request.ticker)
        except QuoteCancelledError:
            self._release(request)
            logger.debug("quote_request_superseded", ticker=request.ticker, generation=request.generation)
            return
        except RateLimitedError as e:
            self._release(request)
            limiter.record_rate_limited(self._clock())
            self.bus.publish_nowait(Event(type=EventType.RATE_LIMITED, data=limiter.status(), source="engine"))
            self._handle_failure(request, e)
            self.refresh_statuses()
            return
        except QuoteSourceError as e:
            self._release(request)
            self._handle_failure(request, e)
            return
        except asyncio.CancelledError:
            self._release(request)
            raise
        self._release(request)
        self.apply_quote(quote, request.generation, request.seq)

    def _handle_failure(self, request: _Request, error: QuoteSourceError) -> None:
        if request.generation != self._generation:
            logger.debug("stale_failure_ignored", ticker=request.ticker, generation=request.generation)
            return
        if isinstance(error, TransientNetworkError):
            self._batch.transient_failures += 1
        tile = self._tiles[request.ticker]
        tile.is_live = False
        self._needs_seed.add(request.ticker)
        logger.warning(
            "quote_fetch_failed",
            ticker=request.ticker,
            kind=type(error).__name__,
            error=str(error),
        )
        now = self._clock()
        status = self._resolve_status(tile, now)
        if status is not tile.session_status:
            tile.session_status = status
            self.bus.publish_nowait(Event(type=EventType.TILE_CHANGED, data=tile.snapshot(), source="engine"))

    def derive_change(self, price: float, base_price: float, provider_pct: Optional[float]) -> float:
        """Provider percent when finite and consistent with the price ratio, else derived."""
        derived = (price - base_price) / base_price * 100 if base_price > 0 else 0.0
        if provider_pct is not None and math.isfinite(provider_pct):
            if abs(provider_pct - derived) <= self.config.change_tolerance_pct:
                return provider_pct
            logger.debug("provider_change_inconsistent", provider=provider_pct, derived=round(derived, 4))
        return derived

    def apply_quote(self, quote: Quote, generation: int, seq: int) -> bool:
        """Write a live quote unless it is stale. Returns True when applied."""
        ticker = quote.ticker
        if generation != self._generation or self.context.mode is not Mode.LIVE:
            logger.debug("stale_generation_dropped", ticker=ticker, generation=generation, current=self._generation)
            return False
        if seq <= self._applied_seq.get(ticker, 0):
            logger.debug("stale_sequence_dropped", ticker=ticker, seq=seq)
            return False
        tile = self._tiles.get(ticker)
        if tile is None:
            return False

        self._applied_seq[ticker] = seq
        now = self._clock()
        base = quote.prior_close if quote.prior_close is not None and quote.prior_close > 0 else tile.base_price
        change = self.derive_change(quote.current_price, base, quote.percent_change)
        history = self._history[ticker]
        if ticker in self._needs_seed or not tile.is_live:
            # New base after a source switch: restart the sparkline at the prior close
            history.reset(base)
            self._needs_seed.discard(ticker)
        tile.is_live = True
        tile.apply_live(quote.current_price, base, change, now)
        history.append(tile.price)

        if self._batch.generation == generation:
            self._batch.succeeded += 1
        self.context.reconnect.reset()
        self._finish_write(tile, now)
        self._refresh_stats()
        return True

    async def refresh_market_status(self) -> int:
        """Re-poll every exchange in use. Returns how many refreshed."""
        if self.source is None:
            return 0
        now = self._clock()
        limiter = self.context.limiter
        exchanges = self.catalog.active_exchanges(sorted(self.live_eligible))

        async def _one(exchange: str) -> bool:
            if not limiter.try_acquire(self._clock()):
                logger.debug("market_status_skipped", exchange=exchange, state=limiter.state().value)
                return False
            try:
                async with limiter.slot():
                    status = await self.source.fetch_market_status(exchange)
            except RateLimitedError:
                limiter.record_rate_limited(self._clock())
                return False
            except QuoteSourceError as e:
                # Old entry is left to go stale; the resolver then reads CLOSED
                logger.warning("market_status_refresh_failed", exchange=exchange, error=str(e))
                return False
            previous = self.context.market_cache.put(status, self._clock())
            if previous is None or previous.is_open != status.is_open or previous.session != status.session:
                self.bus.publish_nowait(Event(type=EventType.MARKET_STATUS, data=status, source="engine"))
                logger.info("market_status", exchange=exchange, is_open=status.is_open, session=status.session)
            return True

        results = await asyncio.gather(*(_one(ex) for ex in exchanges))
        self.refresh_statuses()
        logger.debug("market_status_polled", ok=sum(results), total=len(results), took=round(self._clock() - now, 3))
        return sum(results)

    async def _seed_live(self) -> None:
        """One-shot quote for every eligible tile right after entering live mode."""
        now = self._clock()
        limiter = self.context.limiter
        requests = []
        for inst in self.catalog:
            if inst.ticker in self.live_eligible and limiter.try_acquire(now):
                requests.append(self._issue(inst.ticker, self._generation, now))
        if requests:
            await asyncio.gather(*(r.task for r in requests), return_exceptions=True)
        logger.info(
            "live_seed_complete",
            requested=len(requests),
            live=sum(1 for t in self._tiles.values() if t.is_live),
        )

    # ── commands ──────────────────────────────────────────────────────────

    async def set_mode(self, mode: Mode) -> bool:
        """Switch between simulation and live sourcing. Returns False when already in ``mode``."""
        async with self._mode_lock:
            if mode is self.context.mode:
                return False
            old = self.context.mode
            self.context.mode = mode
            self._start_generation()
            logger.info("mode_changing", old=old.value, new=mode.value)

            if mode is Mode.LIVE:
                self._sim_active.clear()
                self._applied_seq.clear()
                for ticker in self.live_eligible:
                    self._tiles[ticker].is_live = self.source is not None
                    self._needs_seed.add(ticker)
                if self.source is None:
                    logger.warning("live_mode_without_source")
                self.refresh_statuses()
                self.bus.publish_nowait(Event(type=EventType.MODE_CHANGED, data=mode, source="engine"))
                if self.source is not None:
                    await self.refresh_market_status()
                    await self._seed_live()
                self._live_active.set()
            else:
                self._live_active.clear()
                self._needs_seed.clear()
                for tile in self._tiles.values():
                    tile.is_live = False
                self.refresh_statuses()
                self.bus.publish_nowait(Event(type=EventType.MODE_CHANGED, data=mode, source="engine"))
                if not self.context.paused:
                    self._sim_active.set()
            self._refresh_stats()
            logger.info("mode_changed", mode=mode.value)
            return True

    def set_volatility_multiplier(self, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"volatility multiplier must be a non-negative number, got {value!r}")
        value = min(float(value), self.config.max_volatility_multiplier)
        self.context.volatility_multiplier = value
        logger.info("volatility_set", multiplier=value)
        return value

    def set_tick_interval_ms(self, value: int) -> int:
        clamped = int(max(self.config.min_tick_interval_ms, min(self.config.max_tick_interval_ms, int(value))))
        self.context.tick_interval_ms = clamped
        self._interval_changed.set()
        logger.info("tick_interval_set", interval_ms=clamped)
        return clamped

    def force_scenario(self, scenario: Scenario, now: Optional[float] = None) -> None:
        """Crash: every change in [-10, -5]. Bull run: [5, 10]. Reset: 0, price back to base."""
        now = self._clock() if now is None else now
        for tile in self._tiles.values():
            if scenario is Scenario.CRASH:
                change = -5.0 - float(self._rng.uniform(0.0, 5.0))
            elif scenario is Scenario.BULL_RUN:
                change = 5.0 + float(self._rng.uniform(0.0, 5.0))
            else:
                change = 0.0
            tile.apply_simulated(change, now)
            self._history[tile.ticker].append(tile.price)
            self._finish_write(tile, now)
        self._refresh_stats()
        logger.info("scenario_forced", scenario=scenario.value)

    def set_view(self, view: ViewFilter) -> AggregateStats:
        self._view = view
        return self._refresh_stats()

    def pause(self) -> None:
        self.context.paused = True
        self._sim_active.clear()
        logger.info("simulation_paused")

    def resume(self) -> None:
        self.context.paused = False
        if self.context.mode is Mode.SIMULATION:
            self._sim_active.set()
        logger.info("simulation_resumed")

    async def request_history_refresh(self, ticker: str) -> Optional[List[float]]:
        """Backfill one live tile's history from the provider's recent 1-minute closes."""
        tile = self._tiles[ticker]
        if self.source is None or self.context.mode is not Mode.LIVE or not tile.is_live:
            logger.debug("history_refresh_ignored", ticker=ticker, is_live=tile.is_live)
            return None
        limiter = self.context.limiter
        now = self._clock()
        if not limiter.try_acquire(now):
            logger.debug("history_refresh_skipped", ticker=ticker, state=limiter.state(now).value)
            return None
        try:
            async with limiter.slot():
                prices = await self.source.fetch_history(ticker, now - self.config.history_backfill_s, now)
        except RateLimitedError:
            limiter.record_rate_limited(self._clock())
            return None
        except QuoteSourceError as e:
            logger.warning("history_refresh_failed", ticker=ticker, error=str(e))
            return None
        if not prices:
            return None
        history = self._history[ticker]
        history.replace(prices[-history.capacity:])
        self.bus.publish_nowait(Event(type=EventType.HISTORY_REFRESHED, data=ticker, source="engine"))
        logger.info("history_refreshed", ticker=ticker, samples=len(history))
        return history.to_list()

    # ── schedulers ────────────────────────────────────────────────────────

    async def _sleep_tick(self) -> None:
        self._interval_changed.clear()
        try:
            await asyncio.wait_for(self._interval_changed.wait(), timeout=self.context.tick_interval_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def run_simulation_loop(self) -> None:
        logger.info("simulation_loop_started")
        while True:
            await self._sim_active.wait()
            self.tick()
            await self._sleep_tick()

    async def run_live_loop(self) -> None:
        logger.info("live_loop_started", interval=self.config.live_refresh_s)
        while True:
            await self._live_active.wait()
            await asyncio.sleep(self.config.live_refresh_s)
            if self.context.mode is not Mode.LIVE:
                continue
            if self._batch.all_failed:
                delay = self.context.reconnect.next_delay()
                logger.warning("live_feed_unreachable", retry_in=delay, attempt=self.context.reconnect.attempt)
                await asyncio.sleep(delay)
                if self.context.mode is not Mode.LIVE:
                    continue
            self.refresh_statuses()
            self.poll_live()

    async def run_market_status_loop(self) -> None:
        logger.info("market_status_loop_started", interval=self.config.market_ping_s)
        while True:
            await self._live_active.wait()
            await asyncio.sleep(self.config.market_ping_s)
            if self.context.mode is Mode.LIVE:
                await self.refresh_market_status()

    async def drain(self) -> None:
        """Wait for every in-flight quote request to settle."""
        while self._in_flight:
            tasks = [r.task for r in self._in_flight.values() if r.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)
            for ticker, request in list(self._in_flight.items()):
                if request.task is None or request.task.done():
                    self._in_flight.pop(ticker, None)

    async def aclose(self) -> None:
        self._start_generation()
        if self.source is not None:
            await self.source.aclose()
