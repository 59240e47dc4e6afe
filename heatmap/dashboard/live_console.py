"""Rich terminal heatmap: tile grid, market stats and an event log."""

import asyncio
import time
from collections import deque
from typing import Deque, List, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from heatmap.core.event_bus import Event, EventBus, EventType
from heatmap.core.logger import get_logger
from heatmap.state import Classification, Mode, SessionStatus, TileSnapshot

logger = get_logger(__name__)

SPARK_CHARS = "▁▂▃▄▅▆▇█"

TILE_STYLES = {
    Classification.STRONG_GAIN: "bold white on green4",
    Classification.GAIN: "white on dark_green",
    Classification.NEUTRAL: "white on grey23",
    Classification.LOSS: "white on dark_red",
    Classification.STRONG_LOSS: "bold white on red3",
}

STATUS_DOTS = {
    SessionStatus.OPEN: ("●", "green"),
    SessionStatus.PRE: ("●", "yellow"),
    SessionStatus.POST: ("●", "orange1"),
    SessionStatus.CLOSED: ("●", "red"),
    SessionStatus.STANDBY: ("◌", "grey50"),
}


def sparkline(prices: Sequence[float], width: int = 12) -> str:
    """Block-character sparkline of the last ``width`` prices."""
    points = list(prices)[-width:]
    if len(points) < 2:
        return ""
    lo, hi = min(points), max(points)
    span = hi - lo
    if span <= 0:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * len(points)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[int(round((p - lo) / span * top))] for p in points)


def _fmt_pct(p: float) -> str:
    return f"{'+' if p >= 0 else ''}{p:.2f}%"


def _build_header(engine) -> Panel:
    limiter = engine.limiter_status()
    mode = engine.mode
    paused = engine.context.paused

    mode_text = ("● LIVE", "bold green") if mode is Mode.LIVE else ("◆ SIMULATION", "bold cyan")
    if limiter.state.value == "backoff":
        api = (f"API backoff {limiter.backoff_remaining_s:.0f}s", "bold red")
    else:
        api = (f"API {limiter.calls_in_window}/{limiter.max_calls} ({limiter.state.value})", "dim")

    t = Table.grid(expand=True, padding=(0, 2))
    t.add_column(ratio=2)
    t.add_column(ratio=3)
    t.add_column(ratio=2)
    t.add_row(
        Text.assemble(mode_text, ("  paused" if paused else "", "yellow")),
        Text.assemble(
            (f"tick {engine.context.tick_interval_ms}ms", "dim"),
            ("  ", ""),
            (f"volatility x{engine.context.volatility_multiplier:.1f}", "dim"),
            ("  ", ""),
            api,
        ),
        Text(time.strftime("%H:%M:%S"), style="dim", justify="right"),
    )
    return Panel(t, title="[bold]Market Heatmap[/bold]", border_style="cyan", height=3)


def _tile_cell(engine, snap: TileSnapshot) -> Text:
    dot, dot_color = STATUS_DOTS[snap.session_status]
    style = TILE_STYLES[snap.classification]
    trend = engine.get_trend(snap.ticker)
    arrow = "↑" if trend > 0 else "↓" if trend < 0 else "→"
    return Text.assemble(
        (f"{snap.ticker:<6}", style),
        (f" {dot}", dot_color),
        ("\n", ""),
        (f"{snap.price:>10,.2f}", style),
        ("\n", ""),
        (f"{_fmt_pct(snap.change_pct):>8} {arrow}", style),
        ("\n", ""),
        (sparkline(engine.get_history(snap.ticker)), "dim"),
    )


def _build_grid(engine, columns: int = 10) -> Panel:
    snaps = engine.get_snapshots(visible_only=True)
    t = Table.grid(expand=True, padding=(0, 1))
    for _ in range(columns):
        t.add_column(ratio=1)
    for i in range(0, len(snaps), columns):
        row = [_tile_cell(engine, s) for s in snaps[i:i + columns]]
        row += [""] * (columns - len(row))
        t.add_row(*row)
    if not snaps:
        t.add_row(Text("No tiles match the current filter", style="dim"))
    view = engine.get_view()
    subtitle = f"{view.category.value} | sort {view.sort.value}" + (f" | '{view.search}'" if view.search else "")
    title = f"{len(snaps)} of {len(engine.catalog)} tiles" if view.is_filtered else f"{len(snaps)} tiles"
    return Panel(t, title=f"[bold]{title}[/bold]", subtitle=subtitle, border_style="blue")


def _build_stats(engine) -> Panel:
    stats = engine.get_aggregate_stats()
    t = Table(box=box.SIMPLE, show_header=False, expand=True)
    t.add_column("Metric", style="dim")
    t.add_column("Value", justify="right")
    temp_color = "green" if stats.temperature > 0 else "red" if stats.temperature < 0 else "yellow"
    t.add_row("Gaining", f"[green]{stats.gaining}[/green]")
    t.add_row("Losing", f"[red]{stats.losing}[/red]")
    t.add_row("Mean change", _fmt_pct(stats.mean_change))
    t.add_row("Temperature", f"[{temp_color}]{stats.temperature:+.1f}[/{temp_color}]")
    t.add_row("Volatility", f"{stats.volatility:.1f}")
    t.add_row("Visible", str(stats.visible_count))
    return Panel(t, title="[bold]Market Stats[/bold]", border_style="magenta")


def _build_events_log(events: Sequence[Tuple[float, str, str]]) -> Panel:
    t = Table(box=box.SIMPLE, show_header=False, expand=True)
    t.add_column("Time", style="dim", width=8)
    t.add_column("Event", ratio=1)
    if events:
        for ts, msg, color in reversed(events):
            t.add_row(time.strftime("%H:%M:%S", time.localtime(ts)), Text(msg[:60], style=color))
    else:
        t.add_row("", "[dim]Waiting for events...[/dim]")
    return Panel(t, title="[bold]Events[/bold]", border_style="dim")


def describe_event(event: Event) -> Tuple[str, str]:
    """One-line log text and colour for a bus event."""
    if event.type is EventType.MODE_CHANGED:
        return f"Mode: {event.data.value}", "cyan"
    if event.type is EventType.MARKET_STATUS:
        status = event.data
        state = "open" if status.is_open else status.session
        return f"{status.exchange} market {state}", "green" if status.is_open else "yellow"
    if event.type is EventType.RATE_LIMITED:
        return f"Rate limited, cooling down {event.data.backoff_remaining_s:.0f}s", "red"
    if event.type is EventType.HISTORY_REFRESHED:
        return f"History refreshed: {event.data}", "blue"
    return event.type.name.lower(), "white"


class LiveConsole:
    """Rich Live view of the engine, redrawn ``refresh_per_second`` times a second."""

    LOG_TYPES = (
        EventType.MODE_CHANGED,
        EventType.MARKET_STATUS,
        EventType.RATE_LIMITED,
        EventType.HISTORY_REFRESHED,
    )

    def __init__(self, engine, bus: EventBus, refresh_per_second: int = 4, max_events: int = 12):
        self._engine = engine
        self._bus = bus
        self._refresh_rate = refresh_per_second
        self._events: Deque[Tuple[float, str, str]] = deque(maxlen=max_events)

    @property
    def events(self) -> List[Tuple[float, str, str]]:
        return list(self._events)

    def record(self, event: Event) -> None:
        message, color = describe_event(event)
        self._events.append((event.timestamp, message, color))

    def build_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
        )
        layout["body"].split_row(
            Layout(name="grid", ratio=4),
            Layout(name="side", ratio=1),
        )
        layout["side"].split_column(
            Layout(name="stats", size=10),
            Layout(name="events"),
        )
        layout["header"].update(_build_header(self._engine))
        layout["grid"].update(_build_grid(self._engine))
        layout["stats"].update(_build_stats(self._engine))
        layout["events"].update(_build_events_log(self.events))
        return layout

    async def _consume(self) -> None:
        queues = [(et, await self._bus.subscribe(et)) for et in self.LOG_TYPES]

        async def _drain(queue: asyncio.Queue) -> None:
            while True:
                self.record(await queue.get())

        try:
            await asyncio.gather(*(_drain(q) for _, q in queues))
        finally:
            for event_type, queue in queues:
                self._bus.unsubscribe(event_type, queue)

    async def run(self) -> None:
        consumer = asyncio.ensure_future(self._consume())
        console = Console()
        try:
            with Live(self.build_layout(), console=console, refresh_per_second=self._refresh_rate,
                      screen=True) as live:
                logger.info("dashboard_started")
                while True:
                    live.update(self.build_layout())
                    await asyncio.sleep(1.0 / self._refresh_rate)
        except asyncio.CancelledError:
            logger.info("dashboard_stopped")
            raise
        finally:
            consumer.cancel()
