"""
FastAPI application factory for the ranking backtester service.

Provides REST API for:
- Running progressive search phases as background jobs on one shared worker pool
- Cancelling running or pending search jobs
- Trade detail queries
- Managing saved conditions
- Health checks
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI

from ranking_backtester import __version__
from ranking_backtester.caching.signal_cache import SignalCache
from ranking_backtester.engine.detail import DetailQueryRunner
from ranking_backtester.engine.pool import WorkerPool
from ranking_backtester.logging import get_logger, setup_logging
from ranking_backtester.persistence.condition_store import SavedConditionStore
from ranking_backtester.persistence.job_store import JobStore
from ranking_backtester.settings import EngineSettings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — initialize and cleanup resources."""
    log_level = os.environ.get("LOG_LEVEL", "INFO")
    json_logs = os.environ.get("JSON_LOGS", "false").lower() == "true"
    log_dir = os.environ.get("LOG_DIR")
    setup_logging(
        log_level=log_level,
        json_logs=json_logs,
        log_to_file=log_dir is not None,
        log_dir=Path(log_dir) if log_dir else None,
    )

    data_dir = Path(os.environ.get("DATA_DIR", "data"))
    data_dir.mkdir(parents=True, exist_ok=True)

    jobs_db = os.environ.get("JOBS_DB_PATH", str(data_dir / "jobs.db"))
    conditions_db = os.environ.get("CONDITIONS_DB_PATH", str(data_dir / "conditions.db"))

    job_store = JobStore(db_path=jobs_db)
    condition_store = SavedConditionStore(db_path=conditions_db)
    await job_store.initialize()
    await condition_store.initialize()

    settings = EngineSettings.from_env()

    app.state.job_store = job_store
    app.state.condition_store = condition_store
    app.state.settings = settings
    app.state.signal_cache = SignalCache(max_size=settings.signal_cache_size)
    app.state.detail_runner = DetailQueryRunner()
    app.state.worker_pool = WorkerPool(settings.max_workers)
    app.state.running_searches = {}

    logger.info(
        "Ranking backtester service started",
        jobs_db=jobs_db,
        conditions_db=conditions_db,
        settings=settings.to_dict(),
        pool_size=app.state.worker_pool.size,
    )

    yield

    for controller in list(app.state.running_searches.values()):
        controller.cancel()
    app.state.worker_pool.close()
    app.state.detail_runner.close()
    await job_store.close()
    await condition_store.close()
    logger.info("Ranking backtester service stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Ranking Backtester Service",
        description="Ranking-signal backtesting and progressive parameter search",
        version=__version__,
        lifespan=lifespan,
    )

    from ranking_backtester.api.routes import router
    app.include_router(router)

    return app
