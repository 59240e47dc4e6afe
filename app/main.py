"""FastAPI application serving the heatmap engine over HTTP."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from heatmap.core.config import get_config
from heatmap.core.logger import get_logger, setup_logging
from heatmap.core.stream_manager import TaskManager
from heatmap.dashboard.export import SnapshotStore
from heatmap.engine.reconciliation import ReconciliationEngine
from heatmap.main import build_engine, start_engine_tasks
from heatmap.state import Mode

from .api.routes import router as api_router
from .config import settings

logger = get_logger("app.main")


def create_app(engine: Optional[ReconciliationEngine] = None, start_engine: Optional[bool] = None) -> FastAPI:
    """Build the app. ``engine`` defaults to one built from the environment on startup."""
    run_loops = settings.START_ENGINE if start_engine is None else start_engine

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        """Startup / shutdown lifecycle: engine loops run as supervised background tasks."""
        config = get_config()
        setup_logging(config.log_level, json_output=settings.JSON_LOGS)
        eng = engine or build_engine(config)
        app_instance.state.engine = eng
        manager = TaskManager()
        app_instance.state.tasks = manager

        if run_loops:
            start_engine_tasks(manager, eng)
            if config.start_mode.lower() == Mode.LIVE.value:
                await eng.set_mode(Mode.LIVE)
            logger.info("heatmap_service_started", instruments=len(eng.catalog), mode=eng.mode.value)

        yield  # FastAPI serves requests here

        await manager.stop_all()
        if run_loops:
            SnapshotStore(config.snapshot_path, max_age_s=config.snapshot_max_age_s).save(eng.get_snapshots())
        await eng.aclose()
        logger.info("heatmap_service_stopped")

    app_instance = FastAPI(
        title="Market Heatmap",
        description="Live-updating price heatmap driven by simulated motion or polled quotes",
        version="1.0.0",
        lifespan=lifespan,
    )

    app_instance.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app_instance.include_router(api_router)
    return app_instance


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
