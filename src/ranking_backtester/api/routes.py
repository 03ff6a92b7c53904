"""
API routes for the ranking backtester service.

Endpoints:
- POST /api/v1/progressive/phase1 — submit Phase 1 search job (202)
- POST /api/v1/progressive/phase2a — submit buy-side refinement job (202)
- POST /api/v1/progressive/phase2b — submit sell-side refinement job (202)
- GET  /api/v1/jobs — list jobs
- GET  /api/v1/jobs/{job_id} — get job status/result
- POST /api/v1/jobs/{job_id}/cancel — cancel a pending or running job
- POST /api/v1/detail — per-step trade detail for one configuration
- GET  /api/v1/conditions — list saved conditions
- POST /api/v1/conditions — save a condition
- GET  /api/v1/conditions/{condition_id} — get saved condition
- DELETE /api/v1/conditions/{condition_id} — delete saved condition
- GET  /health — health check
"""

import asyncio
from functools import partial
from typing import Annotated, Any

import pandas as pd
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ranking_backtester import __version__
from ranking_backtester.api.auth import verify_api_key
from ranking_backtester.caching.signal_cache import SignalCache
from ranking_backtester.engine.models import PhaseBaseline, SavedCondition, SimulationConfig, SimulationResult
from ranking_backtester.engine.pool import WorkerPool
from ranking_backtester.engine.progressive import ProgressiveSearchController
from ranking_backtester.engine.signal import SignalConfig
from ranking_backtester.enums import (
    ConditionSource,
    GridKind,
    InitialPosition,
    ThresholdPrecision,
    ThresholdSymmetry,
)
from ranking_backtester.errors import BacktestError, InvalidParameterError
from ranking_backtester.logging import get_logger, log_context
from ranking_backtester.ranking.composite import PERIOD_DAYS, TimeWindow
from ranking_backtester.settings import EngineSettings

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================


class SignalParams(BaseModel):
    source: str = Field(default="rti", pattern="^(rti|composite)$")
    indicators: dict[str, bool] = Field(
        default_factory=lambda: {"macd": True, "rsi": True, "ao": True, "disparity": True, "rti": True},
    )
    zscore_mode: str = Field(default="full_range", pattern="^(full_range|sliding)$")
    rti_trend_window: int = Field(default=100, ge=2, le=1000)
    rti_sensitivity: float = Field(default=95.0, gt=0, le=100)
    rti_signal_length: int = Field(default=20, ge=1, le=500)


class SearchRequest(BaseModel):
    candles: list[dict[str, Any]] = Field(min_length=2)
    signal: SignalParams = Field(default_factory=SignalParams)
    initial_position: str = Field(default="cash", pattern="^(cash|coin)$")
    base_timestamp: int | None = None
    period: str | None = None
    precision: str | None = Field(default=None, pattern="^(standard|fine)$")
    symmetry: str | None = Field(default=None, pattern="^(mirrored|negated)$")


class Phase1Request(SearchRequest):
    condition_min: int = Field(default=1, ge=1, le=10)
    condition_max: int = Field(default=10, ge=1, le=10)
    threshold_min: float = Field(default=0.2, ge=0, le=5)
    threshold_max: float = Field(default=2.0, ge=0, le=5)


class ConfigParams(BaseModel):
    buy_lookback: int = Field(ge=1, le=120)
    buy_threshold: float = Field(ge=-5, le=5)
    sell_lookback: int = Field(ge=1, le=120)
    sell_threshold: float = Field(ge=-5, le=5)


class Phase2Request(SearchRequest):
    baseline: ConfigParams


class DetailRequest(BaseModel):
    candles: list[dict[str, Any]] = Field(min_length=2)
    signal: SignalParams = Field(default_factory=SignalParams)
    config: ConfigParams
    initial_position: str = Field(default="cash", pattern="^(cash|coin)$")
    base_timestamp: int | None = None
    period: str | None = None
    analysis_start: int | None = None


class ConditionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    buy_condition_count: int = Field(ge=1, le=120)
    buy_threshold: float
    sell_condition_count: int = Field(ge=1, le=120)
    sell_threshold: float
    expected_return: float = 0.0
    trade_count: int = Field(default=0, ge=0)
    source: str = Field(default="phase1", pattern="^(phase1|phase2a|phase2b)$")
    memo: str | None = None


class JobResponse(BaseModel):
    job_id: str
    status: str
    message: str = ""


# =============================================================================
# Health
# =============================================================================


@router.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    return {
        "status": "healthy",
        "service": "ranking-backtester",
        "version": __version__,
    }


# =============================================================================
# Progressive search
# =============================================================================


@router.post("/api/v1/progressive/phase1", response_model=JobResponse, status_code=202)
async def submit_phase1(
    req: Phase1Request,
    background_tasks: BackgroundTasks,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> JobResponse:
    """Submit a Phase 1 (symmetric) search job."""
    if req.condition_min > req.condition_max:
        raise HTTPException(status_code=422, detail="condition_min must not exceed condition_max")
    if req.threshold_min >= req.threshold_max:
        raise HTTPException(status_code=422, detail="threshold_min must be below threshold_max")
    return await _submit(request, background_tasks, GridKind.PHASE1, req)


@router.post("/api/v1/progressive/phase2a", response_model=JobResponse, status_code=202)
async def submit_phase2a(
    req: Phase2Request,
    background_tasks: BackgroundTasks,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> JobResponse:
    """Submit a buy-side refinement job around ``baseline``."""
    return await _submit(request, background_tasks, GridKind.PHASE2A, req)


@router.post("/api/v1/progressive/phase2b", response_model=JobResponse, status_code=202)
async def submit_phase2b(
    req: Phase2Request,
    background_tasks: BackgroundTasks,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> JobResponse:
    """Submit a sell-side refinement job around ``baseline``."""
    return await _submit(request, background_tasks, GridKind.PHASE2B, req)


async def _submit(
    request: Request,
    background_tasks: BackgroundTasks,
    kind: GridKind,
    req: SearchRequest,
) -> JobResponse:
    job_store = request.app.state.job_store
    params = req.model_dump(exclude={"candles"})
    params["candle_count"] = len(req.candles)
    job_id = await job_store.create(job_type=kind.value, params=params)

    background_tasks.add_task(_execute_phase, request.app, job_id, kind, req)
    return JobResponse(job_id=job_id, status="pending", message=f"{kind.value} job submitted")


async def _execute_phase(app: Any, job_id: str, kind: GridKind, req: SearchRequest) -> None:
    """Run one search phase in a worker thread and record the outcome."""
    job_store = app.state.job_store
    running = app.state.running_searches

    with log_context(job_id=job_id, kind=kind.value):
        try:
            job = await job_store.get(job_id)
            if job and job["status"] == "cancelled":
                logger.info("Search job cancelled before start")
                return

            await job_store.update_status(job_id, "running")
            candles = _load_candles(req.candles, req.base_timestamp, req.period)
            controller = _build_controller(req, candles, app.state.worker_pool, app.state.settings, app.state.signal_cache)

            running[job_id] = controller
            try:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, partial(_run_phase, kind, req, controller))
            finally:
                running.pop(job_id, None)

            if result is None:
                await job_store.update_status(job_id, "cancelled", error="Search was cancelled")
            else:
                await job_store.update_status(job_id, "completed", result=result)

        except Exception as e:
            logger.error("Search job failed", error=str(e))
            await job_store.update_status(job_id, "failed", error=str(e))


def _build_controller(
    req: SearchRequest,
    candles: pd.DataFrame,
    pool: WorkerPool,
    settings: EngineSettings,
    cache: SignalCache,
) -> ProgressiveSearchController:
    return ProgressiveSearchController(
        candles,
        signal_config=SignalConfig.from_dict(req.signal.model_dump()),
        initial_position=InitialPosition(req.initial_position),
        pool=pool,
        symmetry=ThresholdSymmetry(req.symmetry) if req.symmetry else None,
        precision=ThresholdPrecision(req.precision) if req.precision else None,
        cache=cache,
        settings=settings,
    )


def _run_phase(
    kind: GridKind,
    req: SearchRequest,
    controller: ProgressiveSearchController,
) -> dict[str, Any] | None:
    """Blocking body of a search job; runs on the shared pool, queued behind other jobs."""
    if kind is GridKind.PHASE1:
        grid = controller.run_phase1(
            condition_range=(req.condition_min, req.condition_max),
            threshold_range=(req.threshold_min, req.threshold_max),
        )
    else:
        baseline = PhaseBaseline(
            source=ConditionSource.PHASE1,
            config=_to_config(req.baseline, req.initial_position),
            result=SimulationResult.neutral(),
        )
        if kind is GridKind.PHASE2A:
            grid = controller.run_phase2a(baseline)
        else:
            grid = controller.run_phase2b(baseline)

    if grid is None:
        return None
    return {
        "grid": grid.to_dict(include_trades=False),
        "best": controller.select_baseline(grid).to_dict(),
    }


@router.get("/api/v1/jobs")
async def list_jobs(
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
    status: str | None = None,
    job_type: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    job_store = request.app.state.job_store
    return await job_store.list_jobs(status=status, job_type=job_type, limit=limit)


@router.get("/api/v1/jobs/{job_id}")
async def get_job(
    job_id: str,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> dict[str, Any]:
    job_store = request.app.state.job_store
    job = await job_store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/api/v1/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> JobResponse:
    """Cancel a running job on the shared pool, or stop a pending one before it starts."""
    job_store = request.app.state.job_store
    job = await job_store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    controller = request.app.state.running_searches.get(job_id)
    if controller is not None:
        controller.cancel()
        logger.info("Search job cancel requested", job_id=job_id)
        return JobResponse(job_id=job_id, status="cancelling", message="Cancel requested")

    if job["status"] == "pending":
        await job_store.update_status(job_id, "cancelled", error="Search was cancelled")
        return JobResponse(job_id=job_id, status="cancelled", message="Job cancelled before start")

    raise HTTPException(status_code=409, detail=f"Job is already {job['status']}")


# =============================================================================
# Trade detail
# =============================================================================


@router.post("/api/v1/detail")
async def trade_detail(
    req: DetailRequest,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> dict[str, Any]:
    """Replay one configuration and return every step with running returns."""
    try:
        candles = _load_candles(req.candles, req.base_timestamp, req.period)
        config = _to_config(req.config, req.initial_position)
        future = request.app.state.detail_runner.submit(
            candles,
            config,
            signal_config=SignalConfig.from_dict(req.signal.model_dump()),
            analysis_start=req.analysis_start,
        )
        return await asyncio.wrap_future(future)
    except BacktestError as e:
        logger.warning("Detail query rejected", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))


# =============================================================================
# Saved conditions
# =============================================================================


@router.get("/api/v1/conditions")
async def list_conditions(
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
    source: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    condition_store = request.app.state.condition_store
    try:
        source_filter = ConditionSource(source) if source else None
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source: {source}")
    conditions = await condition_store.list_conditions(source=source_filter, limit=limit)
    return [c.to_dict() for c in conditions]


@router.post("/api/v1/conditions", status_code=201)
async def create_condition(
    req: ConditionCreate,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> dict[str, Any]:
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Condition name must not be blank")
    condition_store = request.app.state.condition_store
    condition = SavedCondition(
        name=name,
        buy_condition_count=req.buy_condition_count,
        buy_threshold=req.buy_threshold,
        sell_condition_count=req.sell_condition_count,
        sell_threshold=req.sell_threshold,
        expected_return=req.expected_return,
        trade_count=req.trade_count,
        source=ConditionSource(req.source),
        memo=req.memo,
    )
    await condition_store.create(condition)
    return condition.to_dict()


@router.get("/api/v1/conditions/{condition_id}")
async def get_condition(
    condition_id: str,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> dict[str, Any]:
    condition_store = request.app.state.condition_store
    condition = await condition_store.get(condition_id)
    if not condition:
        raise HTTPException(status_code=404, detail="Condition not found")
    return condition.to_dict()


@router.delete("/api/v1/conditions/{condition_id}")
async def delete_condition(
    condition_id: str,
    request: Request,
    api_key: Annotated[str, Depends(verify_api_key)],
) -> dict[str, str]:
    condition_store = request.app.state.condition_store
    deleted = await condition_store.delete(condition_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Condition not found")
    return {"status": "deleted", "id": condition_id}


# =============================================================================
# Helpers
# =============================================================================


def _load_candles(
    candles_data: list[dict[str, Any]],
    base_timestamp: int | None = None,
    period: str | None = None,
) -> pd.DataFrame:
    """Candle rows to a DataFrame, optionally cut to a lookback period."""
    candles = pd.DataFrame(candles_data)
    if base_timestamp is not None:
        if period is not None and period not in PERIOD_DAYS:
            raise InvalidParameterError(f"Unknown period: {period}")
        candles = TimeWindow(base_timestamp, period or "1M").apply(candles)
    return candles


def _to_config(params: ConfigParams, initial_position: str) -> SimulationConfig:
    return SimulationConfig(
        buy_lookback=params.buy_lookback,
        buy_threshold=params.buy_threshold,
        sell_lookback=params.sell_lookback,
        sell_threshold=params.sell_threshold,
        initial_position=InitialPosition(initial_position),
    )
