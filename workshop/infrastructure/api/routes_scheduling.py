"""Scheduling endpoints: on-demand optimizer pass and delayed-jobs check."""

from fastapi import APIRouter, Depends

from workshop.domain.errors import WorkshopError
from workshop.infrastructure.api.dependencies import get_engine, http_error
from workshop.infrastructure.container import EngineContext

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.post("/optimize")
async def optimize_schedule(engine: EngineContext = Depends(get_engine)):
    try:
        result = await engine.optimizer.execute()
    except WorkshopError as e:
        raise http_error(e) from e
    return result.to_dict()


@router.post("/delayed-jobs")
async def check_delayed_jobs(engine: EngineContext = Depends(get_engine)):
    try:
        delayed = await engine.delayed_jobs.execute()
    except WorkshopError as e:
        raise http_error(e) from e
    return {"delayedJobs": delayed}
