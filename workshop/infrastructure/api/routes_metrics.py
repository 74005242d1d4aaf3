"""Metrics endpoints: monthly technician performance and runtime counters."""

from fastapi import APIRouter, Depends

from workshop.domain.errors import WorkshopError
from workshop.infrastructure.api.dependencies import get_engine, http_error
from workshop.infrastructure.container import EngineContext

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/technicians/monthly")
async def monthly_technician_metrics(engine: EngineContext = Depends(get_engine)):
    try:
        return await engine.technician_metrics.execute()
    except WorkshopError as e:
        raise http_error(e) from e


@router.delete("/technicians/cache")
async def invalidate_metrics_cache(engine: EngineContext = Depends(get_engine)):
    try:
        removed = await engine.technician_metrics.invalidate_cache()
    except WorkshopError as e:
        raise http_error(e) from e
    return {"status": "ok", "invalidated": removed}


@router.get("/runtime")
async def runtime_metrics(engine: EngineContext = Depends(get_engine)):
    return {
        "metrics": engine.metrics.snapshot(),
        "breakers": engine.breakers.all_status(),
    }


@router.post("/runtime/flush")
async def flush_runtime_metrics(engine: EngineContext = Depends(get_engine)):
    record_id = await engine.flush_metrics()
    return {"status": "ok" if record_id else "empty", "recordId": record_id}
