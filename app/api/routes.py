"""API routes for the heatmap service."""
import io
import csv
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from heatmap.dashboard.export import CSV_HEADERS, csv_rows, export_filename
from heatmap.engine.stats import SortKey, ViewCategory, ViewFilter
from heatmap.state import Mode, Scenario

router = APIRouter()


def _engine(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not running")
    return engine


def _tile_payload(engine, ticker: str) -> Dict[str, Any]:
    try:
        snap = engine.get_snapshot(ticker)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Ticker {ticker} not found")
    inst = engine.catalog[ticker]
    payload = snap.to_dict()
    payload.update({"name": inst.name, "sector": inst.sector, "exchange": inst.exchange})
    return payload


@router.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@router.get("/api/tiles")
async def get_tiles(request: Request, visible: bool = Query(False, description="Only tiles in the current view")):
    """Every tile snapshot, in catalog (or current view) order."""
    engine = _engine(request)
    tickers = [s.ticker for s in engine.get_snapshots(visible_only=visible)]
    return {
        "mode": engine.mode.value,
        "timestamp": datetime.now().isoformat(),
        "tiles": [_tile_payload(engine, t) for t in tickers],
    }


@router.get("/api/tiles/{ticker}")
async def get_tile(request: Request, ticker: str):
    return _tile_payload(_engine(request), ticker.upper())


@router.get("/api/tiles/{ticker}/history")
async def get_tile_history(request: Request, ticker: str):
    engine = _engine(request)
    ticker = ticker.upper()
    try:
        prices = engine.get_history(ticker)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Ticker {ticker} not found")
    return {"ticker": ticker, "prices": prices, "trend": engine.get_trend(ticker)}


@router.post("/api/tiles/{ticker}/history/refresh")
async def refresh_tile_history(request: Request, ticker: str):
    """Backfill a live tile's history from recent 1-minute candles."""
    engine = _engine(request)
    ticker = ticker.upper()
    try:
        prices = await engine.request_history_refresh(ticker)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Ticker {ticker} not found")
    return {"ticker": ticker, "refreshed": prices is not None, "prices": prices or engine.get_history(ticker)}


@router.get("/api/stats")
async def get_stats(request: Request):
    engine = _engine(request)
    view = engine.get_view()
    return {
        "stats": engine.get_aggregate_stats().to_dict(),
        "view": {"category": view.category.value, "search": view.search, "sort": view.sort.value},
    }


@router.get("/api/status")
async def get_status(request: Request):
    """Mode, knobs and rate-limiter state for the status indicator."""
    engine = _engine(request)
    limiter = engine.limiter_status()
    return {
        "mode": engine.mode.value,
        "paused": engine.context.paused,
        "tick_interval_ms": engine.context.tick_interval_ms,
        "volatility_multiplier": engine.context.volatility_multiplier,
        "live_tiles": sum(1 for s in engine.get_snapshots() if s.is_live),
        "limiter": {
            "state": limiter.state.value,
            "calls_in_window": limiter.calls_in_window,
            "max_calls": limiter.max_calls,
            "backoff_remaining_s": limiter.backoff_remaining_s,
            "in_flight": limiter.in_flight,
        },
    }


@router.post("/api/mode")
async def set_mode(request: Request, mode: str = Query(..., description="simulation or live")):
    engine = _engine(request)
    try:
        target = Mode(mode.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown mode {mode}")
    changed = await engine.set_mode(target)
    return {"mode": engine.mode.value, "changed": changed}


@router.post("/api/volatility")
async def set_volatility(request: Request, multiplier: float = Query(..., description="0 to 7.5")):
    engine = _engine(request)
    try:
        value = engine.set_volatility_multiplier(multiplier)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"volatility_multiplier": value}


@router.post("/api/tick-interval")
async def set_tick_interval(request: Request, ms: int = Query(..., description="Clamped to 250-5000")):
    return {"tick_interval_ms": _engine(request).set_tick_interval_ms(ms)}


@router.post("/api/scenario")
async def force_scenario(request: Request, name: str = Query(..., description="crash, bull_run or reset")):
    engine = _engine(request)
    try:
        scenario = Scenario(name.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown scenario {name}")
    engine.force_scenario(scenario)
    return {"scenario": scenario.value, "stats": engine.get_aggregate_stats().to_dict()}


@router.post("/api/view")
async def set_view(
    request: Request,
    category: str = Query("all", description="all, gaining, losing or neutral"),
    search: str = Query("", description="Ticker, name or sector substring"),
    sort: str = Query("default", description="default, change_desc, change_asc, ticker or price"),
):
    engine = _engine(request)
    try:
        view = ViewFilter(category=ViewCategory(category.lower()), search=search, sort=SortKey(sort.lower()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    stats = engine.set_view(view)
    return {"visible": stats.visible_count, "stats": stats.to_dict()}


@router.post("/api/pause")
async def pause(request: Request):
    engine = _engine(request)
    engine.pause()
    return {"paused": True}


@router.post("/api/resume")
async def resume(request: Request):
    engine = _engine(request)
    engine.resume()
    return {"paused": False}


@router.get("/api/export.csv")
async def export_csv(request: Request, visible: Optional[bool] = Query(True)):
    """Download the grid as CSV."""
    engine = _engine(request)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADERS)
    writer.writerows(csv_rows(engine, visible_only=bool(visible)))
    buf.seek(0)
    return StreamingResponse(
        iter([buf.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )
